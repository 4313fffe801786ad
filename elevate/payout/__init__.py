"""
Payout preparation, broadcasting and confirmation.
"""
