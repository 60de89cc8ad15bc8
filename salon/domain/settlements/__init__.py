"""
Settlements Domain

Close-out of appointments: final prices, deposits, gift cards, lateness
penalties, commissions and the invoicing request.
"""
