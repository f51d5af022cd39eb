"""
Billing kernel: values, domain records, typed errors, logging and persistence
for rent payment reconciliation.
"""
