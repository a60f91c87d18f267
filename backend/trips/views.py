import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from accounts.permissions import IsAdminRole
from drivers.models import DriverProfile
from .models import DispatchConfig, TripOffer
from .serializers import (
    DispatchConfigSerializer,
    TripCreateSerializer,
    TripOfferSerializer,
    TripSerializer,
    TripStatusSerializer,
)

# Import from services layer
from services.exceptions import DispatchError
from services.matching import reject_offer
from services.trip_management import (
    accept_offer,
    create_trip,
    get_current_rider_trip,
    get_trip_for_user,
    transition_trip,
)

logger = logging.getLogger(__name__)


def _error(exc: DispatchError):
    return Response(exc.to_dict(), status=exc.status_code)


def _driver_profile(user):
    if user.role != 'driver':
        return None, Response(
            {'success': False, 'error': 'forbidden', 'message': 'Only drivers can respond to trip offers'},
            status=status.HTTP_403_FORBIDDEN
        )
    try:
        return user.driver_profile, None
    except DriverProfile.DoesNotExist:
        return None, Response(
            {'success': False, 'error': 'driver_not_found', 'message': 'Driver profile not found'},
            status=status.HTTP_404_NOT_FOUND
        )


# ==================== Rider Trip APIs ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated])
def create_trip_request(request):
    """Create a new trip request and start dispatching it"""
    if request.user.role != 'rider':
        return Response(
            {'success': False, 'error': 'forbidden', 'message': 'Only riders can request trips'},
            status=status.HTTP_403_FORBIDDEN
        )

    if get_current_rider_trip(request.user):
        return Response(
            {'success': False, 'error': 'active_trip_exists', 'message': 'You already have an active trip'},
            status=status.HTTP_400_BAD_REQUEST
        )

    serializer = TripCreateSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        result = create_trip(request.user, **serializer.validated_data)
    except DispatchError as exc:
        return _error(exc)

    return Response({
        **TripSerializer(result.trip).data,
        'message': result.message,
        **(result.extra or {}),
    }, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def get_current_trip(request):
    """Get the rider's current active trip"""
    trip = get_current_rider_trip(request.user)
    if not trip:
        return Response({'message': 'No active trip'}, status=status.HTTP_404_NOT_FOUND)
    return Response(TripSerializer(trip).data, status=status.HTTP_200_OK)


# ==================== Driver Offer Responses ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated])
def accept_trip(request, trip_id):
    """Driver accepts their pending offer for this trip"""
    profile, error = _driver_profile(request.user)
    if error:
        return error

    try:
        trip = accept_offer(trip_id, profile.pk)
    except DispatchError as exc:
        logger.info("Driver %s could not accept trip %s: %s", profile.pk, trip_id, exc.error_code)
        return _error(exc)

    return Response({
        'success': True,
        'message': 'Trip accepted. Navigate to the pickup location.',
        'trip': TripSerializer(trip).data,
    }, status=status.HTTP_200_OK)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def reject_trip(request, trip_id):
    """Driver declines their pending offer; the next driver is notified"""
    profile, error = _driver_profile(request.user)
    if error:
        return error

    try:
        reject_offer(trip_id, profile.pk)
    except DispatchError as exc:
        return _error(exc)

    return Response({'success': True, 'message': 'Offer declined.'}, status=status.HTTP_200_OK)


# ==================== Trip Status ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated])
def update_trip_status(request, trip_id):
    """Move a trip through its lifecycle (ARRIVED, IN_PROGRESS, COMPLETED, CANCELLED)"""
    serializer = TripStatusSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        trip = transition_trip(
            trip_id,
            request.user,
            serializer.validated_data['status'],
            reason=serializer.validated_data.get('reason', ''),
        )
    except DispatchError as exc:
        return _error(exc)

    return Response({'success': True, 'trip': TripSerializer(trip).data}, status=status.HTTP_200_OK)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def trip_detail(request, trip_id):
    try:
        trip = get_trip_for_user(trip_id, request.user)
    except DispatchError as exc:
        return _error(exc)
    return Response(TripSerializer(trip).data)


# ==================== Dispatch Administration ====================

@api_view(['GET', 'PUT'])
@permission_classes([IsAdminRole])
def dispatch_config(request):
    """Read or update the dispatch tunables. Changes apply from the next round."""
    config = DispatchConfig.load()

    if request.method == 'GET':
        return Response(DispatchConfigSerializer(config).data)

    serializer = DispatchConfigSerializer(config, data=request.data, partial=True)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    serializer.save(updated_by=request.user)
    logger.info("Dispatch config updated by %s: %s", request.user.username, serializer.validated_data)
    return Response(serializer.data)


@api_view(['GET'])
@permission_classes([IsAdminRole])
def dispatch_offers(request):
    """Recent offers, optionally filtered by trip_id and status"""
    offers = TripOffer.objects.select_related('driver__user').order_by('-offered_at', '-id')

    trip_id = request.query_params.get('trip_id')
    if trip_id and trip_id.isdigit():
        offers = offers.filter(trip_id=trip_id)
    offer_status = request.query_params.get('status')
    if offer_status:
        offers = offers.filter(status=offer_status.upper())

    serializer = TripOfferSerializer(offers[:100], many=True)
    return Response({'count': len(serializer.data), 'offers': serializer.data})
