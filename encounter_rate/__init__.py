"""
Encounter rate modelling for citizen-science checklists.

Spatiotemporal subsampling, balanced random forests, monotonic calibration
and prediction surfaces for a single focal species.
"""

__version__ = "0.1.0"
