from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from accounts.permissions import IsAdminRole
from services import credits as credit_ledger
from services.exceptions import DispatchError
from .serializers import CreditAmountSerializer, CreditLedgerEntrySerializer


def _entry_response(entry, http_status=status.HTTP_201_CREATED):
    return Response({
        "success": True,
        "entry": CreditLedgerEntrySerializer(entry).data,
        "balance": entry.balance_after,
    }, status=http_status)


@api_view(['POST'])
@permission_classes([IsAdminRole])
def add_credits(request, driver_id):
    """Admin top-up of a driver's credit balance"""
    serializer = CreditAmountSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    data = serializer.validated_data

    try:
        entry = credit_ledger.add_credits(
            driver_id,
            data["amount"],
            actor=request.user,
            reason=data["reason"],
            package_name=data["package_name"] or None,
            duration_days=data["duration_days"],
        )
    except DispatchError as exc:
        return Response(exc.to_dict(), status=exc.status_code)

    return _entry_response(entry)


@api_view(['POST'])
@permission_classes([IsAdminRole])
def deduct_credits(request, driver_id):
    serializer = CreditAmountSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    data = serializer.validated_data

    try:
        entry = credit_ledger.deduct_credits(
            driver_id,
            data["amount"],
            actor=request.user,
            trip=data["trip_id"],
            reason=data["reason"],
        )
    except DispatchError as exc:
        return Response(exc.to_dict(), status=exc.status_code)

    return _entry_response(entry)


@api_view(['POST'])
@permission_classes([IsAdminRole])
def refund_credits(request, driver_id):
    serializer = CreditAmountSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    data = serializer.validated_data

    try:
        entry = credit_ledger.refund_credits(
            driver_id,
            data["amount"],
            trip=data["trip_id"],
            reason=data["reason"] or "Manual refund",
            actor=request.user,
        )
    except DispatchError as exc:
        return Response(exc.to_dict(), status=exc.status_code)

    return _entry_response(entry)


@api_view(['GET'])
@permission_classes([IsAdminRole])
def credit_statistics(request, driver_id):
    try:
        stats = credit_ledger.get_statistics(driver_id)
        stats["reconciliation"] = credit_ledger.reconcile_balance(driver_id)
    except DispatchError as exc:
        return Response(exc.to_dict(), status=exc.status_code)
    return Response(stats)
