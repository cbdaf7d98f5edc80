"""
Campus Bid Engine - Core Business Logic

The bidding package holds the domain engine:
1. Intake validation (booking window, availability, amount, duplicates)
2. Resolution (auto-accept, auto-reject below minimum, or queue for review)
3. Settlement (commission split and host payout bookkeeping)
4. Payment lifecycle (authorise, capture, cancel, expire)
"""
