"""
Parking garage management: spot inventory, tariff based billing, ticket
issuance on entry and settlement on exit.
"""

__version__ = "1.0.0"
