"""
MK Volume Bot payments
"""
