"""
Client query keys each mutation makes stale.

Returned in mutation responses as ``invalidates``; the portal refetches each
key independently and in no particular order.
"""
INVENTORY = ["bloodInventory", "donations", "bloodInventoryStats"]
TRACKING = ["bloodUnitTracking"]
EXPIRY = ["expiredBloodUnits", "bloodUnitsExpiringSoon"]
REQUESTS = ["bloodRequests", "bloodRequest"]
APPLICATIONS = ["admin-applications", "applications"]

UNIT_STAGE = INVENTORY + TRACKING
UNIT_DISPATCH = INVENTORY + TRACKING + REQUESTS
UNIT_USE = INVENTORY + TRACKING
UNIT_DISPOSAL = INVENTORY + TRACKING + EXPIRY + REQUESTS
UNIT_RESERVATION = INVENTORY + TRACKING + REQUESTS
REQUEST_CHANGE = REQUESTS + INVENTORY + TRACKING
APPLICATION_REVIEW = APPLICATIONS
