"""Ledger Keyring Meta information.
   Ledger Keyring provisions keys, encrypts third-party access tokens
   and authenticates sessions for the budget tracker.
"""
__title__ = 'ledger_keyring'
__description__ = (
   'Credential and token lifecycle core: key provisioning, '
   'encrypted token storage, user accounts and session authentication.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2026 Budget Tracker contributors'
__author__ = 'Budget Tracker contributors'
__author_email__ = 'maintainers@budget-tracker.dev'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/budget-tracker/ledger-keyring'
