from django.contrib.auth import get_user_model
from django.test import TestCase

from services.exceptions import InsufficientBalanceError, InvalidAmountError
from services.payments import credit_wallet, debit_wallet, get_wallet_balance, top_up
from .models import Wallet, WalletTransaction

User = get_user_model()


class WalletTests(TestCase):
	def setUp(self):
		self.user = User.objects.create_user(username='rider', password='pass1234', role='rider')

	def test_missing_wallet_has_zero_balance(self):
		self.assertEqual(get_wallet_balance(self.user), 0)
		self.assertFalse(Wallet.objects.exists())

	def test_top_up_and_debit(self):
		tx = top_up(self.user, 300)
		self.assertEqual(tx.type, WalletTransaction.TYPE_CREDIT)
		self.assertEqual(tx.balance_after, 300)

		tx = debit_wallet(self.user, 120, description='Trip payment')
		self.assertEqual(tx.type, WalletTransaction.TYPE_DEBIT)
		self.assertEqual(tx.balance_after, 180)
		self.assertEqual(get_wallet_balance(self.user), 180)
		self.assertEqual(WalletTransaction.objects.filter(wallet__user=self.user).count(), 2)

	def test_debit_beyond_balance_fails_cleanly(self):
		credit_wallet(self.user, 50)

		with self.assertRaises(InsufficientBalanceError) as ctx:
			debit_wallet(self.user, 80)
		self.assertEqual(ctx.exception.required, 80)
		self.assertEqual(ctx.exception.available, 50)
		self.assertEqual(get_wallet_balance(self.user), 50)
		self.assertEqual(WalletTransaction.objects.count(), 1)

	def test_amount_must_be_positive(self):
		with self.assertRaises(InvalidAmountError):
			credit_wallet(self.user, 0)
		with self.assertRaises(InvalidAmountError):
			debit_wallet(self.user, -10)
