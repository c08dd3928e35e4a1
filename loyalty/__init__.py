"""
Loyalty accrual backend.

Users upload purchase order numbers, a background worker collects accruals
for them from the external accrual system, and users spend the accrued
balance through withdrawals.
"""
