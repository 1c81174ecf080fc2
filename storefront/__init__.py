"""
                TENZAI Storefront

Ordering back-office service for a pickup restaurant: staff PIN
sessions, order status handling, PromptPay payment QR payloads and
LINE customer notifications.

Author: Khalil_Bannouri
Version: 3.0.0
License: MIT
"""

__version__ = "3.0.0"
__author__ = "Khalil_Bannouri"
