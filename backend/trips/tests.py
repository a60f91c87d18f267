import dataclasses
from datetime import timedelta
from io import StringIO
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.db.models import Sum
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate

from common.utils import TravelEstimate
from credits.models import CreditLedgerEntry
from payments.models import WalletTransaction
from drivers.models import DriverProfile
from services.credits import add_credits, deduct_commission, deduct_credits, reconcile_balance
from services.exceptions import (
	ForbiddenActionError,
	InsufficientBalanceError,
	InsufficientCreditsError,
	InvalidAmountError,
	InvalidCoordinatesError,
	InvalidTransitionError,
	OfferExpiredError,
	OfferNotFoundError,
	TripAlreadyAcceptedError,
)
from services.matching import (
	acceptance_stats,
	compute_score,
	dispatch,
	expire_stale_offers,
	find_candidate_drivers,
	rank_candidates,
	reject_offer,
)
from services.payments import get_wallet_balance, top_up
from services.routing import CircuitBreaker, MatrixProvider
from services.trip_management import (
	accept_offer,
	calculate_commission,
	can_transition,
	complete_settlement,
	create_trip,
	dispatch_due_scheduled_trips,
	transition_trip,
)
from .models import DispatchConfig, DispatchSettings, Trip, TripOffer
from .tasks import expire_trip_offer_task
from .views import (
	accept_trip,
	create_trip_request,
	dispatch_config,
	dispatch_offers,
	update_trip_status,
)

User = get_user_model()

PICKUP = (12.9716, 77.5946)
DROP = (12.9352, 77.6245)


def straight_line_provider():
	return MatrixProvider(None, CircuitBreaker('test'))


class FixedEtaProvider:
	"""Same travel estimate for every destination."""

	def __init__(self, distance_km=1.0, duration_min=5.0):
		self.estimate = TravelEstimate(distance_km, duration_min)

	def get_travel_estimates(self, origin, destinations):
		return [self.estimate for _ in destinations]


class DispatchTestCase(TestCase):
	"""Rider, three online drivers at increasing distance and patched push/timers."""

	def setUp(self):
		self.factory = APIRequestFactory()
		self.provider = straight_line_provider()
		self.rider = User.objects.create_user(
			username='rider',
			password='pass1234',
			role='rider',
			phone_number='9000000000'
		)
		self.near = self.make_driver('driver_near', 12.9726, 77.5946)
		self.mid = self.make_driver('driver_mid', 12.9900, 77.5946)
		self.far = self.make_driver('driver_far', 13.0300, 77.5946)

		task_patcher = patch('services.matching.offer_dispatch.expire_trip_offer_task')
		driver_patcher = patch('services.matching.offer_dispatch.notify_driver_event', return_value=True)
		rider_patcher = patch('services.matching.offer_dispatch.notify_rider_event', return_value=True)
		send_patcher = patch('realtime.notifications._group_send', return_value=True)
		self.mock_task = task_patcher.start()
		self.mock_notify_driver = driver_patcher.start()
		self.mock_notify_rider = rider_patcher.start()
		send_patcher.start()
		self.addCleanup(patch.stopall)

	def make_driver(self, username, lat, lng, credits=100, **extra):
		extra.setdefault('status', DriverProfile.STATUS_ONLINE)
		user = User.objects.create_user(
			username=username,
			password='driver1234',
			role='driver',
			phone_number='9100000000'
		)
		profile = DriverProfile.objects.create(
			user=user,
			vehicle_number='KA-%s' % username,
			current_latitude=lat,
			current_longitude=lng,
			**extra
		)
		if credits:
			add_credits(profile, credits, duration_days=30)
		profile.refresh_from_db()
		return profile

	def make_trip(self, fare=100, **extra):
		return Trip.objects.create(
			rider=self.rider,
			pickup_latitude=PICKUP[0],
			pickup_longitude=PICKUP[1],
			drop_latitude=DROP[0],
			drop_longitude=DROP[1],
			fare=fare,
			**extra
		)

	def dispatched_trip(self, **extra):
		trip = self.make_trip(**extra)
		dispatch(trip.id, matrix_provider=self.provider)
		return trip

	def accepted_trip(self, **extra):
		trip = self.dispatched_trip(**extra)
		return accept_offer(trip.id, self.near.id)


class CommissionTests(TestCase):
	def test_commission_is_twenty_percent_of_round_fare(self):
		split = calculate_commission(100)
		self.assertEqual(split.platform_commission, 20)
		self.assertEqual(split.driver_earnings, 80)
		self.assertEqual(split.commission_rate, 20)

	def test_commission_rounds_up(self):
		split = calculate_commission(101)
		self.assertEqual(split.platform_commission, 21)
		self.assertEqual(split.driver_earnings, 80)

		split = calculate_commission(1)
		self.assertEqual((split.platform_commission, split.driver_earnings), (1, 0))

	def test_split_always_adds_up_to_fare(self):
		for fare in (1, 7, 99, 250, 1234):
			split = calculate_commission(fare, rate=15)
			self.assertEqual(split.platform_commission + split.driver_earnings, fare)

	def test_zero_fare_splits_into_zeros(self):
		split = calculate_commission(0)
		self.assertEqual((split.platform_commission, split.driver_earnings), (0, 0))

	def test_negative_or_non_integer_fare_is_rejected(self):
		for fare in (-1, -10, 10.5, True, '100'):
			with self.assertRaises(InvalidAmountError):
				calculate_commission(fare)


class StateMachineTests(TestCase):
	def test_allowed_transitions(self):
		self.assertTrue(can_transition(Trip.STATUS_REQUESTED, Trip.STATUS_ACCEPTED))
		self.assertTrue(can_transition(Trip.STATUS_ACCEPTED, Trip.STATUS_ARRIVED))
		self.assertTrue(can_transition(Trip.STATUS_ARRIVED, Trip.STATUS_IN_PROGRESS))
		self.assertTrue(can_transition(Trip.STATUS_IN_PROGRESS, Trip.STATUS_COMPLETED))
		self.assertTrue(can_transition(Trip.STATUS_IN_PROGRESS, Trip.STATUS_CANCELLED))

	def test_skipping_and_terminal_transitions_are_refused(self):
		self.assertFalse(can_transition(Trip.STATUS_ACCEPTED, Trip.STATUS_COMPLETED))
		self.assertFalse(can_transition(Trip.STATUS_REQUESTED, Trip.STATUS_IN_PROGRESS))
		self.assertFalse(can_transition(Trip.STATUS_COMPLETED, Trip.STATUS_CANCELLED))
		self.assertFalse(can_transition(Trip.STATUS_CANCELLED, Trip.STATUS_REQUESTED))


class DispatchConfigTests(TestCase):
	def test_defaults(self):
		config = DispatchConfig.load()
		self.assertEqual(config.pk, DispatchConfig.SINGLETON_ID)
		self.assertEqual(config.snapshot(), DispatchSettings())

	def test_out_of_range_values_are_rejected(self):
		config = DispatchConfig.load()
		config.offer_timeout = 5
		with self.assertRaises(ValidationError):
			config.save()

	def test_snapshot_is_immutable(self):
		snapshot = DispatchConfig.load().snapshot()
		with self.assertRaises(dataclasses.FrozenInstanceError):
			snapshot.max_offers = 10

	def test_only_one_row_is_kept(self):
		DispatchConfig(max_offers=4).save()
		DispatchConfig(max_offers=5).save()
		self.assertEqual(DispatchConfig.objects.count(), 1)
		self.assertEqual(DispatchConfig.load().max_offers, 5)


class CandidatePoolTests(DispatchTestCase):
	def test_only_eligible_drivers_in_radius_are_returned(self):
		self.make_driver('offline', 12.9720, 77.5946, status=DriverProfile.STATUS_OFFLINE)
		self.make_driver('flagged', 12.9720, 77.5947, anomaly_count=3)
		self.make_driver('broke', 12.9720, 77.5948, credits=0)
		self.make_driver('faraway', 13.2000, 77.5946)
		expired = self.make_driver('expired', 12.9720, 77.5949)
		DriverProfile.objects.filter(pk=expired.pk).update(credit_expires_at=timezone.now() - timedelta(days=1))

		candidates = find_candidate_drivers(PICKUP[0], PICKUP[1], 10)
		self.assertEqual([c.driver.pk for c in candidates], [self.near.pk, self.mid.pk, self.far.pk])

	def test_no_expiry_date_counts_as_active(self):
		DriverProfile.objects.exclude(pk=self.near.pk).update(status=DriverProfile.STATUS_OFFLINE)
		DriverProfile.objects.filter(pk=self.near.pk).update(credit_expires_at=None)

		candidates = find_candidate_drivers(PICKUP[0], PICKUP[1], 10)
		self.assertEqual([c.driver.pk for c in candidates], [self.near.pk])

	def test_empty_pool_is_not_an_error(self):
		DriverProfile.objects.update(status=DriverProfile.STATUS_OFFLINE)
		self.assertEqual(find_candidate_drivers(PICKUP[0], PICKUP[1], 10), [])

	def test_malformed_pickup_raises(self):
		with self.assertRaises(InvalidCoordinatesError):
			find_candidate_drivers(95, 77.5, 10)
		with self.assertRaises(InvalidCoordinatesError):
			find_candidate_drivers('abc', 77.5, 10)


class ScoringTests(DispatchTestCase):
	def test_perfect_candidate_score(self):
		score = compute_score(0, 5.0, 0.5, 'city', 'city', DispatchSettings())
		self.assertAlmostEqual(score, 1.0)

	def test_eta_beyond_cap_contributes_nothing(self):
		score = compute_score(45, 5.0, 0.5, 'city', 'premium', DispatchSettings())
		self.assertAlmostEqual(score, 0.3 + 0.1)

	def test_acceptance_rate_defaults_without_history(self):
		self.assertEqual(acceptance_stats([self.near.pk]), {self.near.pk: 0.5})

	def test_acceptance_rate_from_history_in_two_queries(self):
		for i in range(4):
			trip = self.make_trip()
			TripOffer.objects.create(trip=trip, driver=self.near, status=TripOffer.STATUS_EXPIRED)
			if i == 0:
				Trip.objects.filter(pk=trip.pk).update(driver=self.near, status=Trip.STATUS_COMPLETED)

		with self.assertNumQueries(2):
			rates = acceptance_stats([self.near.pk, self.mid.pk])
		self.assertEqual(rates, {self.near.pk: 0.25, self.mid.pk: 0.5})

	def test_service_match_bonus_changes_order(self):
		DriverProfile.objects.filter(pk=self.mid.pk).update(vehicle_type='premium')
		candidates = find_candidate_drivers(PICKUP[0], PICKUP[1], 10)
		ranked = rank_candidates(candidates, PICKUP, 'premium', DispatchSettings(), FixedEtaProvider())
		self.assertEqual(ranked[0].driver.pk, self.mid.pk)
		self.assertAlmostEqual(ranked[0].score - ranked[1].score, 0.1)

	def test_ties_break_on_driver_id(self):
		candidates = find_candidate_drivers(PICKUP[0], PICKUP[1], 10)
		ranked = rank_candidates(candidates, PICKUP, 'city', DispatchSettings(), FixedEtaProvider())
		self.assertEqual(
			[s.driver.pk for s in ranked],
			sorted([self.near.pk, self.mid.pk, self.far.pk])
		)

	def test_closer_driver_ranks_first_on_fallback_estimates(self):
		candidates = find_candidate_drivers(PICKUP[0], PICKUP[1], 10)
		ranked = rank_candidates(candidates, PICKUP, 'city', DispatchSettings(), self.provider)
		self.assertEqual([s.driver.pk for s in ranked], [self.near.pk, self.mid.pk, self.far.pk])
		self.assertTrue(all(s.estimated for s in ranked))
		self.assertAlmostEqual(ranked[0].eta, ranked[0].distance_km * 3)


class OfferDispatchTests(DispatchTestCase):
	def test_dispatch_builds_ranked_offers_and_pushes_the_best(self):
		trip = self.make_trip()
		offers = dispatch(trip.id, matrix_provider=self.provider)

		self.assertEqual([o.driver_id for o in offers], [self.near.id, self.mid.id, self.far.id])
		self.assertTrue(all(o.status == TripOffer.STATUS_PENDING for o in offers))
		self.assertEqual(trip.offers.filter(sent_at__isnull=False).count(), 1)

		first = TripOffer.objects.get(pk=offers[0].pk)
		self.assertIsNotNone(first.sent_at)
		self.mock_task.apply_async.assert_called_once_with((first.id,), countdown=30)

		args = self.mock_notify_driver.call_args[0]
		self.assertEqual(args[0], 'trip_offer')
		self.assertEqual(args[2], self.near.user_id)

	def test_round_uses_config_snapshot(self):
		config = DispatchConfig.load()
		config.max_offers = 2
		config.offer_timeout = 45
		config.save()

		trip = self.make_trip()
		offers = dispatch(trip.id, matrix_provider=self.provider)
		self.assertEqual(len(offers), 2)
		self.mock_task.apply_async.assert_called_once_with((offers[0].id,), countdown=45)

	def test_no_candidates_notifies_rider_and_keeps_trip_requested(self):
		DriverProfile.objects.update(status=DriverProfile.STATUS_OFFLINE)
		trip = self.make_trip()

		self.assertEqual(dispatch(trip.id, matrix_provider=self.provider), [])
		trip.refresh_from_db()
		self.assertEqual(trip.status, Trip.STATUS_REQUESTED)
		self.assertEqual(self.mock_notify_rider.call_args[0][0], 'no_drivers_available')
		self.mock_task.apply_async.assert_not_called()

	def test_dispatch_skips_non_requested_trip(self):
		trip = self.make_trip(status=Trip.STATUS_CANCELLED)
		self.assertEqual(dispatch(trip.id, matrix_provider=self.provider), [])
		self.assertFalse(trip.offers.exists())

	def test_reject_advances_to_next_driver(self):
		trip = self.dispatched_trip()
		reject_offer(trip.id, self.near.id)

		near_offer = trip.offers.get(driver=self.near)
		mid_offer = trip.offers.get(driver=self.mid)
		self.assertEqual(near_offer.status, TripOffer.STATUS_REJECTED)
		self.assertIsNotNone(near_offer.responded_at)
		self.assertIsNotNone(mid_offer.sent_at)
		self.assertEqual(self.mock_notify_driver.call_args[0][2], self.mid.user_id)

		with self.assertRaises(OfferExpiredError):
			reject_offer(trip.id, self.near.id)

	def test_reject_without_offer(self):
		trip = self.make_trip()
		with self.assertRaises(OfferNotFoundError):
			reject_offer(trip.id, self.near.id)

	def test_exhausted_queue_notifies_rider(self):
		trip = self.dispatched_trip()
		for driver in (self.near, self.mid, self.far):
			reject_offer(trip.id, driver.id)

		trip.refresh_from_db()
		self.assertEqual(trip.status, Trip.STATUS_REQUESTED)
		self.assertEqual(self.mock_notify_rider.call_args[0][0], 'no_drivers_available')
		self.assertFalse(trip.offers.filter(status=TripOffer.STATUS_PENDING).exists())

	def test_expiry_task_expires_and_dispatches_next(self):
		trip = self.dispatched_trip()
		first = trip.offers.get(driver=self.near)

		self.assertTrue(expire_trip_offer_task(first.id))
		first.refresh_from_db()
		self.assertEqual(first.status, TripOffer.STATUS_EXPIRED)
		self.assertIsNotNone(trip.offers.get(driver=self.mid).sent_at)

		# Second run is a no-op
		self.assertFalse(expire_trip_offer_task(first.id))
		self.assertFalse(expire_trip_offer_task(999999))

	def test_expiry_never_touches_accepted_offer(self):
		trip = self.accepted_trip()
		offer = trip.offers.get(driver=self.near)

		self.assertFalse(expire_trip_offer_task(offer.id))
		offer.refresh_from_db()
		self.assertEqual(offer.status, TripOffer.STATUS_ACCEPTED)

	def test_push_failure_advances_immediately(self):
		self.mock_notify_driver.side_effect = [False, True]
		trip = self.dispatched_trip()

		self.assertEqual(trip.offers.get(driver=self.near).status, TripOffer.STATUS_EXPIRED)
		mid_offer = trip.offers.get(driver=self.mid)
		self.assertIsNotNone(mid_offer.sent_at)
		self.mock_task.apply_async.assert_called_once_with((mid_offer.id,), countdown=30)

	def test_redispatch_skips_drivers_already_asked(self):
		trip = self.dispatched_trip()
		reject_offer(trip.id, self.near.id)

		offers = dispatch(trip.id, matrix_provider=self.provider)
		self.assertEqual([o.driver_id for o in offers], [self.mid.id, self.far.id])
		self.assertEqual(trip.offers.filter(driver=self.near).count(), 1)

	def test_sweep_expires_stale_sent_offers(self):
		trip = self.dispatched_trip()

		expired = expire_stale_offers(now=timezone.now() + timedelta(seconds=31))
		self.assertEqual(expired, 1)
		self.assertEqual(trip.offers.get(driver=self.near).status, TripOffer.STATUS_EXPIRED)
		self.assertIsNotNone(trip.offers.get(driver=self.mid).sent_at)

		self.assertEqual(expire_stale_offers(), 0)

	def test_management_command_reports_counts(self):
		out = StringIO()
		call_command('process_offer_timeouts', stdout=out)
		self.assertIn('Expired 0 offer(s); dispatched 0 scheduled trip(s).', out.getvalue())


class AcceptOfferTests(DispatchTestCase):
	def test_accept_debits_commission_and_assigns_driver(self):
		trip = self.dispatched_trip()
		trip = accept_offer(trip.id, self.near.id)

		self.assertEqual(trip.status, Trip.STATUS_ACCEPTED)
		self.assertEqual(trip.driver_id, self.near.id)
		self.assertIsNotNone(trip.accepted_at)
		self.assertEqual(trip.platform_commission, 20)
		self.assertEqual(trip.driver_earnings, 80)

		self.near.refresh_from_db()
		self.assertEqual(self.near.credit_balance, 80)
		self.assertEqual(self.near.status, DriverProfile.STATUS_BUSY)

		entry = CreditLedgerEntry.objects.filter(driver=self.near).first()
		self.assertEqual(entry.action, CreditLedgerEntry.ACTION_TRIP_DEDUCTION)
		self.assertEqual(entry.credits_delta, -20)
		self.assertEqual(entry.balance_after, 80)
		self.assertEqual(entry.trip_id, trip.id)
		self.assertTrue(reconcile_balance(self.near)['consistent'])

	def test_sibling_offers_are_cancelled(self):
		trip = self.accepted_trip()
		statuses = dict(trip.offers.values_list('driver_id', 'status'))
		self.assertEqual(statuses, {
			self.near.id: TripOffer.STATUS_ACCEPTED,
			self.mid.id: TripOffer.STATUS_CANCELLED,
			self.far.id: TripOffer.STATUS_CANCELLED,
		})

	def test_only_one_driver_can_win(self):
		trip = self.accepted_trip()

		with self.assertRaises(TripAlreadyAcceptedError):
			accept_offer(trip.id, self.mid.id)

		self.assertEqual(trip.offers.filter(status=TripOffer.STATUS_ACCEPTED).count(), 1)
		self.mid.refresh_from_db()
		self.assertEqual(self.mid.credit_balance, 100)

	def test_offer_expired_during_acceptance_rolls_back(self):
		trip = self.dispatched_trip()
		offer = trip.offers.get(driver=self.near)
		real_deduct = deduct_commission

		def deduct_then_expire(*args, **kwargs):
			entry = real_deduct(*args, **kwargs)
			TripOffer.objects.filter(pk=offer.pk).update(status=TripOffer.STATUS_EXPIRED)
			return entry

		with patch('services.trip_management.settlement.deduct_commission', side_effect=deduct_then_expire):
			with self.assertRaises(OfferExpiredError):
				accept_offer(trip.id, self.near.id)

		trip.refresh_from_db()
		self.assertEqual(trip.status, Trip.STATUS_REQUESTED)
		self.assertIsNone(trip.driver_id)
		self.near.refresh_from_db()
		self.assertEqual(self.near.credit_balance, 100)
		self.assertFalse(CreditLedgerEntry.objects.filter(trip=trip).exists())

	def test_zero_fare_acceptance_takes_no_commission(self):
		trip = self.dispatched_trip(fare=0)
		trip = accept_offer(trip.id, self.near.id)

		self.assertEqual(trip.status, Trip.STATUS_ACCEPTED)
		self.assertEqual((trip.platform_commission, trip.driver_earnings), (0, 0))
		self.near.refresh_from_db()
		self.assertEqual(self.near.credit_balance, 100)
		self.assertFalse(CreditLedgerEntry.objects.filter(trip=trip).exists())

	def test_insufficient_credits_rolls_back(self):
		deduct_credits(self.near, 90)
		trip = self.dispatched_trip()

		with self.assertRaises(InsufficientCreditsError) as ctx:
			accept_offer(trip.id, self.near.id)
		self.assertEqual(ctx.exception.required, 20)
		self.assertEqual(ctx.exception.available, 10)
		self.assertEqual(ctx.exception.fare, 100)

		trip.refresh_from_db()
		self.assertEqual(trip.status, Trip.STATUS_REQUESTED)
		self.assertIsNone(trip.driver_id)
		self.assertIsNone(trip.platform_commission)
		self.assertEqual(trip.offers.get(driver=self.near).status, TripOffer.STATUS_PENDING)

		self.near.refresh_from_db()
		self.assertEqual(self.near.credit_balance, 10)
		self.assertFalse(CreditLedgerEntry.objects.filter(driver=self.near, trip=trip).exists())

	def test_expired_offer_cannot_be_accepted(self):
		trip = self.dispatched_trip()
		expire_trip_offer_task(trip.offers.get(driver=self.near).id)

		with self.assertRaises(OfferExpiredError):
			accept_offer(trip.id, self.near.id)

	def test_driver_without_offer(self):
		other = self.make_driver('other', 12.9800, 77.5946)
		trip = self.make_trip()
		with self.assertRaises(OfferNotFoundError):
			accept_offer(trip.id, other.id)

	def test_acceptance_notifies_rider_after_commit(self):
		trip = self.dispatched_trip()
		with patch('realtime.notifications.notify_rider_event') as rider_event:
			with self.captureOnCommitCallbacks(execute=True):
				accept_offer(trip.id, self.near.id)
		self.assertEqual(rider_event.call_args[0][0], 'trip_accepted')


class TripLifecycleTests(DispatchTestCase):
	def advance_to_in_progress(self, trip):
		transition_trip(trip.id, self.near.user, Trip.STATUS_ARRIVED)
		return transition_trip(trip.id, self.near.user, Trip.STATUS_IN_PROGRESS)

	def test_full_wallet_trip(self):
		top_up(self.rider, 500)
		trip = self.accepted_trip()

		trip = transition_trip(trip.id, self.near.user, Trip.STATUS_ARRIVED)
		self.assertIsNotNone(trip.arrived_at)
		trip = transition_trip(trip.id, self.near.user, Trip.STATUS_IN_PROGRESS)
		self.assertIsNotNone(trip.started_at)
		trip = transition_trip(trip.id, self.near.user, Trip.STATUS_COMPLETED)

		self.assertEqual(trip.status, Trip.STATUS_COMPLETED)
		self.assertEqual(trip.payment_status, Trip.PAYMENT_PAID)
		self.assertIsNotNone(trip.completed_at)
		self.assertEqual(get_wallet_balance(self.rider), 400)
		self.assertEqual(get_wallet_balance(self.near.user), 80)

		self.near.refresh_from_db()
		self.rider.refresh_from_db()
		self.assertEqual(self.near.status, DriverProfile.STATUS_ONLINE)
		self.assertEqual(self.near.credit_balance, 80)
		self.assertEqual(self.rider.completed_trips, 1)

		ledger_total = CreditLedgerEntry.objects.filter(driver=self.near).aggregate(total=Sum('credits_delta'))['total']
		self.assertEqual(ledger_total, self.near.credit_balance)
		settlement = CreditLedgerEntry.objects.filter(driver=self.near).first()
		self.assertEqual(settlement.credits_delta, 0)
		self.assertEqual(settlement.amount, 20)

	def test_complete_settlement_result(self):
		top_up(self.rider, 100)
		trip = self.advance_to_in_progress(self.accepted_trip())

		result = complete_settlement(trip.id)
		self.assertEqual(result.rider_debit, 100)
		self.assertEqual(result.driver_credit, 80)
		self.assertEqual(result.platform_commission, 20)
		self.assertEqual(get_wallet_balance(self.rider), 0)

	def test_rider_balance_must_cover_fare(self):
		top_up(self.rider, 50)
		trip = self.advance_to_in_progress(self.accepted_trip())

		with self.assertRaises(InsufficientBalanceError):
			transition_trip(trip.id, self.near.user, Trip.STATUS_COMPLETED)

		trip.refresh_from_db()
		self.assertEqual(trip.status, Trip.STATUS_IN_PROGRESS)
		self.assertEqual(trip.payment_status, Trip.PAYMENT_PENDING)
		self.assertEqual(get_wallet_balance(self.rider), 50)
		self.assertEqual(get_wallet_balance(self.near.user), 0)

	def test_cash_trip_settles_through_wallets_too(self):
		top_up(self.rider, 100)
		trip = self.advance_to_in_progress(self.accepted_trip(payment_method=Trip.PAYMENT_CASH))

		result = complete_settlement(trip.id)
		self.assertEqual(result.rider_debit, 100)
		self.assertEqual(result.driver_credit, 80)
		self.assertEqual(result.platform_commission, 20)
		self.assertEqual(get_wallet_balance(self.rider), 0)
		self.assertEqual(get_wallet_balance(self.near.user), 80)
		trip.refresh_from_db()
		self.assertEqual(trip.payment_status, Trip.PAYMENT_PAID)

	def test_zero_fare_trip_completes_without_moving_money(self):
		trip = self.advance_to_in_progress(self.accepted_trip(fare=0))

		result = complete_settlement(trip.id)
		self.assertEqual((result.rider_debit, result.driver_credit, result.platform_commission), (0, 0, 0))
		self.assertFalse(WalletTransaction.objects.exists())
		trip.refresh_from_db()
		self.assertEqual(trip.status, Trip.STATUS_COMPLETED)

	def test_skipping_a_status_is_refused(self):
		trip = self.accepted_trip()
		with self.assertRaises(InvalidTransitionError) as ctx:
			transition_trip(trip.id, self.near.user, Trip.STATUS_COMPLETED)
		self.assertEqual(ctx.exception.current, Trip.STATUS_ACCEPTED)
		self.assertEqual(ctx.exception.requested, Trip.STATUS_COMPLETED)

	def test_accepted_is_reserved_for_offer_acceptance(self):
		trip = self.dispatched_trip()
		with self.assertRaises(InvalidTransitionError):
			transition_trip(trip.id, self.rider, Trip.STATUS_ACCEPTED)

	def test_outsider_is_forbidden_before_legality_check(self):
		stranger = User.objects.create_user(username='stranger', password='pass1234', role='rider')
		trip = self.dispatched_trip()
		with self.assertRaises(ForbiddenActionError):
			transition_trip(trip.id, stranger, Trip.STATUS_COMPLETED)

	def test_admin_may_transition_any_trip(self):
		admin = User.objects.create_user(username='ops', password='pass1234', role='admin')
		trip = self.accepted_trip()
		trip = transition_trip(trip.id, admin, Trip.STATUS_ARRIVED)
		self.assertEqual(trip.status, Trip.STATUS_ARRIVED)

	def test_cancel_requested_trip_cancels_pending_offers(self):
		trip = self.dispatched_trip()
		trip = transition_trip(trip.id, self.rider, Trip.STATUS_CANCELLED)

		self.assertEqual(trip.status, Trip.STATUS_CANCELLED)
		self.assertEqual(trip.cancellation_reason, 'Cancelled by rider')
		self.assertIsNotNone(trip.cancelled_at)
		self.assertFalse(trip.offers.filter(status=TripOffer.STATUS_PENDING).exists())

	def test_cancel_before_arrival_refunds_commission(self):
		trip = self.accepted_trip()
		transition_trip(trip.id, self.rider, Trip.STATUS_CANCELLED, reason='Changed plans')

		self.near.refresh_from_db()
		self.assertEqual(self.near.credit_balance, 100)
		self.assertEqual(self.near.status, DriverProfile.STATUS_ONLINE)
		refund = CreditLedgerEntry.objects.filter(driver=self.near).first()
		self.assertEqual(refund.action, CreditLedgerEntry.ACTION_REFUND)
		self.assertEqual(refund.credits_delta, 20)
		self.assertTrue(reconcile_balance(self.near)['consistent'])

	def test_cancel_after_arrival_keeps_commission(self):
		trip = self.accepted_trip()
		transition_trip(trip.id, self.near.user, Trip.STATUS_ARRIVED)
		transition_trip(trip.id, self.near.user, Trip.STATUS_CANCELLED)

		self.near.refresh_from_db()
		self.assertEqual(self.near.credit_balance, 80)
		self.assertFalse(
			CreditLedgerEntry.objects.filter(driver=self.near, action=CreditLedgerEntry.ACTION_REFUND).exists()
		)

	def test_terminal_trip_cannot_be_cancelled(self):
		trip = self.dispatched_trip()
		transition_trip(trip.id, self.rider, Trip.STATUS_CANCELLED)
		with self.assertRaises(InvalidTransitionError):
			transition_trip(trip.id, self.rider, Trip.STATUS_CANCELLED)

	def test_driver_cancellation_notifies_rider(self):
		trip = self.accepted_trip()
		with patch('realtime.notifications.notify_rider_event') as rider_event:
			with self.captureOnCommitCallbacks(execute=True):
				transition_trip(trip.id, self.near.user, Trip.STATUS_CANCELLED)
		self.assertIn('trip_cancelled', [c[0][0] for c in rider_event.call_args_list])


class ScheduledTripTests(DispatchTestCase):
	def test_overdue_schedule_is_dispatched_on_creation_only(self):
		result = create_trip(
			self.rider, PICKUP[0], PICKUP[1], DROP[0], DROP[1], 100,
			scheduled_for=timezone.now() - timedelta(minutes=1),
			matrix_provider=self.provider,
		)
		self.assertFalse(result.extra['scheduled'])
		self.assertIsNotNone(result.trip.scheduled_dispatched_at)
		first_offer = result.trip.offers.get(driver=self.near)

		self.assertEqual(dispatch_due_scheduled_trips(matrix_provider=self.provider), 0)
		same_offer = TripOffer.objects.get(trip=result.trip, driver=self.near)
		self.assertEqual(same_offer.pk, first_offer.pk)
		self.assertEqual(same_offer.sent_at, first_offer.sent_at)

	def test_future_trip_is_stored_without_dispatch(self):
		result = create_trip(
			self.rider, PICKUP[0], PICKUP[1], DROP[0], DROP[1], 100,
			scheduled_for=timezone.now() + timedelta(hours=1),
			matrix_provider=self.provider,
		)
		self.assertTrue(result.extra['scheduled'])
		self.assertFalse(result.trip.offers.exists())

	def test_due_trips_are_dispatched_once(self):
		result = create_trip(
			self.rider, PICKUP[0], PICKUP[1], DROP[0], DROP[1], 100,
			scheduled_for=timezone.now() + timedelta(hours=1),
			matrix_provider=self.provider,
		)
		later = timezone.now() + timedelta(hours=2)

		self.assertEqual(dispatch_due_scheduled_trips(now=later, matrix_provider=self.provider), 1)
		trip = Trip.objects.get(pk=result.trip.pk)
		self.assertEqual(trip.scheduled_dispatched_at, later)
		self.assertEqual(trip.offers.count(), 3)

		self.assertEqual(dispatch_due_scheduled_trips(now=later, matrix_provider=self.provider), 0)

	def test_trips_not_yet_due_are_left_alone(self):
		create_trip(
			self.rider, PICKUP[0], PICKUP[1], DROP[0], DROP[1], 100,
			scheduled_for=timezone.now() + timedelta(hours=1),
			matrix_provider=self.provider,
		)
		self.assertEqual(dispatch_due_scheduled_trips(matrix_provider=self.provider), 0)

	def test_invalid_request_is_rejected(self):
		with self.assertRaises(InvalidCoordinatesError):
			create_trip(self.rider, 120, PICKUP[1], DROP[0], DROP[1], 100)
		with self.assertRaises(InvalidAmountError):
			create_trip(self.rider, PICKUP[0], PICKUP[1], DROP[0], DROP[1], 0)
		self.assertFalse(Trip.objects.exists())


class TripViewTests(DispatchTestCase):
	def setUp(self):
		super().setUp()
		self.admin = User.objects.create_user(username='admin', password='admin1234', role='admin')
		self.payload = {
			'pickup_latitude': PICKUP[0],
			'pickup_longitude': PICKUP[1],
			'drop_latitude': DROP[0],
			'drop_longitude': DROP[1],
			'fare': 150,
		}

	def post(self, view, user, data=None, **kwargs):
		request = self.factory.post('/api/trips/', data or {}, format='json')
		force_authenticate(request, user=user)
		return view(request, **kwargs)

	def test_rider_creates_trip(self):
		response = self.post(create_trip_request, self.rider, self.payload)

		self.assertEqual(response.status_code, 201)
		self.assertEqual(response.data['status'], Trip.STATUS_REQUESTED)
		self.assertEqual(response.data['driver_candidates'], 3)

		response = self.post(create_trip_request, self.rider, self.payload)
		self.assertEqual(response.status_code, 400)
		self.assertEqual(response.data['error'], 'active_trip_exists')

	def test_driver_cannot_request_trip(self):
		response = self.post(create_trip_request, self.near.user, self.payload)
		self.assertEqual(response.status_code, 403)

	def test_invalid_payload(self):
		response = self.post(create_trip_request, self.rider, dict(self.payload, fare=0))
		self.assertEqual(response.status_code, 400)
		self.assertIn('fare', response.data)

	def test_accept_view(self):
		trip = self.dispatched_trip()
		response = self.post(accept_trip, self.near.user, trip_id=trip.id)

		self.assertEqual(response.status_code, 200)
		self.assertTrue(response.data['success'])
		self.assertEqual(response.data['trip']['status'], Trip.STATUS_ACCEPTED)

		response = self.post(accept_trip, self.mid.user, trip_id=trip.id)
		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['error'], 'trip_already_accepted')

	def test_accept_view_reports_missing_credits(self):
		deduct_credits(self.near, 95)
		trip = self.dispatched_trip()
		response = self.post(accept_trip, self.near.user, trip_id=trip.id)

		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['error'], 'insufficient_credits')
		self.assertEqual(response.data['required'], 20)
		self.assertEqual(response.data['available'], 5)

	def test_rider_cannot_accept(self):
		trip = self.dispatched_trip()
		response = self.post(accept_trip, self.rider, trip_id=trip.id)
		self.assertEqual(response.status_code, 403)

	def test_status_view_errors(self):
		trip = self.accepted_trip()

		response = self.post(update_trip_status, self.near.user, {'status': 'COMPLETED'}, trip_id=trip.id)
		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['error'], 'invalid_transition')
		self.assertEqual(response.data['current'], Trip.STATUS_ACCEPTED)

		response = self.post(update_trip_status, self.mid.user, {'status': 'ARRIVED'}, trip_id=trip.id)
		self.assertEqual(response.status_code, 403)

		response = self.post(update_trip_status, self.near.user, {'status': 'ARRIVED'}, trip_id=trip.id)
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['trip']['status'], Trip.STATUS_ARRIVED)

	def test_dispatch_config_admin_only(self):
		request = self.factory.get('/api/trips/dispatch/config/')
		force_authenticate(request, user=self.rider)
		self.assertEqual(dispatch_config(request).status_code, 403)

		request = self.factory.put('/api/trips/dispatch/config/', {'max_offers': 5}, format='json')
		force_authenticate(request, user=self.admin)
		response = dispatch_config(request)
		self.assertEqual(response.status_code, 200)
		self.assertEqual(DispatchConfig.load().max_offers, 5)
		self.assertEqual(DispatchConfig.load().updated_by, self.admin)

		request = self.factory.put('/api/trips/dispatch/config/', {'offer_timeout': 5}, format='json')
		force_authenticate(request, user=self.admin)
		self.assertEqual(dispatch_config(request).status_code, 400)

	def test_dispatch_offers_listing(self):
		trip = self.dispatched_trip()
		self.dispatched_trip()

		request = self.factory.get('/api/trips/dispatch/offers/', {'trip_id': trip.id})
		force_authenticate(request, user=self.admin)
		response = dispatch_offers(request)
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['count'], 3)
		self.assertTrue(all(o['trip'] == trip.id for o in response.data['offers']))
