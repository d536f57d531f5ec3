"""
İnfoLine

Data collection and approval workflow for a school-education hierarchy:
schools fill in category data, sector and region administrators review it,
and deadlines, notifications and completion statistics keep the cycle moving.
"""

__version__ = "0.1.0"
