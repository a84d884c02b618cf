"""
Terminal front-end for plan purchases
"""
