"""
                DineFlow Table Ordering

Backend for QR table-side restaurant ordering: order lifecycle,
kitchen/staff/customer polling views, payment confirmation and
post-service ratings.

Author: Khalil_Bannouri
Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__author__ = "Khalil_Bannouri"
