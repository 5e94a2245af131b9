"""Wallet Vault Meta information.
   Wallet Vault keeps team secrets readable only by wallet-authenticated members.
"""
__title__ = 'wallet_vault'
__description__ = (
   'Wallet Vault stores secrets encrypted for each authorized member, '
   'with access derived from wallet signatures.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2024 Wallet Vault Developers'
__author__ = 'Wallet Vault Developers'
__license__ = 'Apache-2.0'
