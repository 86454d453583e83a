"""
Shipment Service

Moves inventory between organizations through a reviewed shipment.

Features:
- Draft shipments with generated FROM-TO-NNN codes
- Submit / cancel / accept / reject lifecycle
- Ownership transfer of every package on accept, with rollback
- Pallet grouping and package numbering within a draft
- Incoming shipments from external partners with volume auto-calculation
- Event publishing for every lifecycle change
"""

__version__ = "1.0.0"
