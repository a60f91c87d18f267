from datetime import timedelta

from django.contrib.auth import get_user_model
from django.db.models import Sum
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate

from drivers.models import DriverProfile
from services import credits as ledger
from services.exceptions import DriverNotFoundError, InsufficientCreditsError, InvalidAmountError
from .models import CreditLedgerEntry
from .views import add_credits, credit_statistics, deduct_credits, refund_credits

User = get_user_model()


class CreditLedgerTests(TestCase):
	def setUp(self):
		self.admin = User.objects.create_user(username='admin', password='admin1234', role='admin')
		user = User.objects.create_user(username='driver', password='driver1234', role='driver')
		self.driver = DriverProfile.objects.create(user=user, vehicle_number='KA-02-1111')

	def balance(self):
		self.driver.refresh_from_db()
		return self.driver.credit_balance

	def assertLedgerMatchesBalance(self):
		total = CreditLedgerEntry.objects.filter(driver=self.driver).aggregate(total=Sum('credits_delta'))['total'] or 0
		self.assertEqual(total, self.balance())

	def test_add_credits_writes_one_entry(self):
		entry = ledger.add_credits(self.driver, 500, actor=self.admin, reason='Top up', package_name='Silver', duration_days=30)

		self.assertEqual(entry.credits_delta, 500)
		self.assertEqual(entry.balance_after, 500)
		self.assertEqual(entry.action, CreditLedgerEntry.ACTION_ADMIN_ADD)
		self.assertEqual(entry.actor, self.admin)
		self.assertEqual(self.balance(), 500)
		self.assertEqual(self.driver.monthly_package, 'Silver')
		self.assertGreater(self.driver.credit_expires_at, timezone.now() + timedelta(days=29))
		self.assertEqual(CreditLedgerEntry.objects.filter(driver=self.driver).count(), 1)

	def test_balance_after_tracks_each_mutation(self):
		ledger.add_credits(self.driver, 100)
		ledger.deduct_credits(self.driver, 30)
		ledger.refund_credits(self.driver, 10)
		ledger.deduct_commission(self.driver, None, 25, fare=125)

		entries = list(CreditLedgerEntry.objects.filter(driver=self.driver).order_by('id'))
		self.assertEqual([e.balance_after for e in entries], [100, 70, 80, 55])
		self.assertEqual([e.credits_delta for e in entries], [100, -30, 10, -25])
		self.assertLedgerMatchesBalance()

	def test_deduction_never_goes_negative(self):
		ledger.add_credits(self.driver, 40)

		with self.assertRaises(InsufficientCreditsError) as ctx:
			ledger.deduct_credits(self.driver, 50)
		self.assertEqual(ctx.exception.required, 50)
		self.assertEqual(ctx.exception.available, 40)

		self.assertEqual(self.balance(), 40)
		self.assertEqual(CreditLedgerEntry.objects.filter(driver=self.driver).count(), 1)

	def test_exact_balance_can_be_spent(self):
		ledger.add_credits(self.driver, 20)
		entry = ledger.deduct_commission(self.driver, None, 20, fare=100)
		self.assertEqual(entry.balance_after, 0)
		self.assertEqual(entry.amount, 100)

	def test_non_positive_amounts_are_rejected(self):
		for amount in (0, -5, 2.5, True, '10'):
			with self.assertRaises(InvalidAmountError):
				ledger.add_credits(self.driver, amount)
		self.assertFalse(CreditLedgerEntry.objects.exists())

	def test_unknown_driver(self):
		with self.assertRaises(DriverNotFoundError):
			ledger.add_credits(999999, 10)
		with self.assertRaises(DriverNotFoundError):
			ledger.get_balance(999999)

	def test_entries_are_immutable(self):
		entry = ledger.add_credits(self.driver, 10)
		entry.notes = 'edited'
		with self.assertRaises(ValueError):
			entry.save()
		with self.assertRaises(ValueError):
			entry.delete()

	def test_settlement_entry_leaves_balance_untouched(self):
		ledger.add_credits(self.driver, 50)
		entry = ledger.record_settlement(self.driver, None, 20)
		self.assertEqual(entry.credits_delta, 0)
		self.assertEqual(entry.balance_after, 50)
		self.assertLedgerMatchesBalance()

	def test_active_credits(self):
		self.assertFalse(ledger.has_active_credits(self.driver))

		ledger.add_credits(self.driver, 10)
		self.assertTrue(ledger.has_active_credits(self.driver))

		DriverProfile.objects.filter(pk=self.driver.pk).update(credit_expires_at=timezone.now() - timedelta(minutes=1))
		self.assertFalse(ledger.has_active_credits(self.driver))
		self.assertFalse(ledger.get_credit_status(self.driver)['has_active_credits'])

	def test_history_is_newest_first_and_paginated(self):
		for amount in (10, 20, 30):
			ledger.add_credits(self.driver, amount)

		history = ledger.get_history(self.driver, limit=2)
		self.assertEqual([e.credits_delta for e in history], [30, 20])
		history = ledger.get_history(self.driver, limit=2, offset=2)
		self.assertEqual([e.credits_delta for e in history], [10])

	def test_statistics(self):
		ledger.add_credits(self.driver, 100)
		ledger.add_credits(self.driver, 50)
		ledger.deduct_credits(self.driver, 30)
		ledger.refund_credits(self.driver, 10)

		stats = ledger.get_statistics(self.driver)
		self.assertEqual(stats['current_balance'], 130)
		self.assertEqual(stats['total_added'], 150)
		self.assertEqual(stats['total_deducted'], 30)
		self.assertEqual(stats['total_refunded'], 10)
		self.assertEqual(stats['transaction_count'], 4)

	def test_reconciliation_flags_drift(self):
		ledger.add_credits(self.driver, 100)
		self.assertTrue(ledger.reconcile_balance(self.driver)['consistent'])

		DriverProfile.objects.filter(pk=self.driver.pk).update(credit_balance=90)
		report = ledger.reconcile_balance(self.driver)
		self.assertFalse(report['consistent'])
		self.assertEqual(report['difference'], -10)


class CreditAdminViewTests(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()
		self.admin = User.objects.create_user(username='admin', password='admin1234', role='admin')
		user = User.objects.create_user(username='driver', password='driver1234', role='driver')
		self.driver = DriverProfile.objects.create(user=user, vehicle_number='KA-03-2222')

	def post(self, view, user, data):
		request = self.factory.post('/api/credits/', data, format='json')
		force_authenticate(request, user=user)
		return view(request, driver_id=self.driver.pk)

	def test_admin_adds_and_deducts(self):
		response = self.post(add_credits, self.admin, {'amount': 200, 'package_name': 'Gold', 'duration_days': 30})
		self.assertEqual(response.status_code, 201)
		self.assertEqual(response.data['balance'], 200)
		self.assertEqual(response.data['entry']['actor'], 'admin')

		response = self.post(deduct_credits, self.admin, {'amount': 50, 'reason': 'Penalty'})
		self.assertEqual(response.status_code, 201)
		self.assertEqual(response.data['balance'], 150)

		response = self.post(refund_credits, self.admin, {'amount': 5})
		self.assertEqual(response.status_code, 201)
		self.assertEqual(response.data['entry']['notes'], 'Manual refund')

	def test_overdraw_is_a_conflict(self):
		response = self.post(deduct_credits, self.admin, {'amount': 50})
		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['error'], 'insufficient_credits')

	def test_invalid_amount(self):
		response = self.post(add_credits, self.admin, {'amount': 0})
		self.assertEqual(response.status_code, 400)

	def test_non_admin_is_forbidden(self):
		response = self.post(add_credits, self.driver.user, {'amount': 100})
		self.assertEqual(response.status_code, 403)
		self.assertFalse(CreditLedgerEntry.objects.exists())

	def test_statistics_include_reconciliation(self):
		self.post(add_credits, self.admin, {'amount': 100})
		request = self.factory.get('/api/credits/')
		force_authenticate(request, user=self.admin)
		response = credit_statistics(request, driver_id=self.driver.pk)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['total_added'], 100)
		self.assertTrue(response.data['reconciliation']['consistent'])

	def test_unknown_driver(self):
		request = self.factory.post('/api/credits/', {'amount': 10}, format='json')
		force_authenticate(request, user=self.admin)
		response = add_credits(request, driver_id=999999)
		self.assertEqual(response.status_code, 404)
