#!/usr/bin/env python3
"""
Hexagonal Equal-Area Grid
=========================

Assigns observations to cells of a hexagonal tessellation so that spatially
clustered checklists can be thinned to one per cell.

Coordinates are projected to an equal-area CRS with pyproj and binned into
pointy-top hexagons whose adjacent centres are ``spacing_km`` apart. Every
cell therefore covers the same area, ``(sqrt(3) / 2) * spacing_km ** 2``.

Assumes the study region does not contain a pole or straddle the
antimeridian; neither case is handled.
"""

import numpy as np
import pandas as pd
from pyproj import Transformer
from typing import Tuple

from encounter_rate.config.settings import LAT_COL, LON_COL


# Global equal-area cylindrical projection (EASE-Grid 2.0)
DEFAULT_CRS = 'EPSG:6933'

# Cell ids pack the axial (q, r) hex coordinates into one integer
_AXIAL_OFFSET = 2 ** 20
_AXIAL_SPAN = 2 ** 21

EARTH_RADIUS_KM = 6371.0


def haversine_distance(lat1, lon1, lat2, lon2):
    """
    Calculate great circle distance between two points in kilometers.

    Args:
        lat1, lon1: Latitude and longitude of point 1 in degrees
        lat2, lon2: Latitude and longitude of point 2 in degrees

    Returns:
        Distance in kilometers (array if any input is an array)
    """
    lat1_rad = np.radians(lat1)
    lon1_rad = np.radians(lon1)
    lat2_rad = np.radians(lat2)
    lon2_rad = np.radians(lon2)

    dlat = lat2_rad - lat1_rad
    dlon = lon2_rad - lon1_rad

    a = np.sin(dlat / 2)**2 + np.cos(lat1_rad) * \
        np.cos(lat2_rad) * np.sin(dlon / 2)**2
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def _cube_round(q, r):
    """Round fractional axial coordinates to the containing hexagon."""
    s = -q - r
    rq = np.round(q)
    rr = np.round(r)
    rs = np.round(s)

    dq = np.abs(rq - q)
    dr = np.abs(rr - r)
    ds = np.abs(rs - s)

    # Reset the component with the largest rounding error
    fix_q = (dq > dr) & (dq > ds)
    fix_r = ~fix_q & (dr > ds)
    rq = np.where(fix_q, -rr - rs, rq)
    rr = np.where(fix_r, -rq - rs, rr)

    return rq.astype(np.int64), rr.astype(np.int64)


class HexGrid:
    """
    Hexagonal tessellation with a fixed centre-to-centre spacing.

    ``cell_of`` is a pure function of (latitude, longitude): the same
    coordinates always give the same cell id for a given grid.
    """

    def __init__(self, spacing_km: float, crs: str = DEFAULT_CRS):
        if spacing_km <= 0:
            raise ValueError(f"spacing_km must be positive, got {spacing_km}")

        self.spacing_km = float(spacing_km)
        self.crs = crs
        # Circumradius of a hexagon whose centres are `spacing` apart
        self._size_m = self.spacing_km * 1000.0 / np.sqrt(3.0)
        self._forward = Transformer.from_crs('EPSG:4326', crs, always_xy=True)
        self._inverse = Transformer.from_crs(crs, 'EPSG:4326', always_xy=True)

    @classmethod
    def for_region(cls, spacing_km: float, latitude: float, longitude: float):
        """Grid in a Lambert azimuthal equal-area projection centred on a region."""
        crs = (f'+proj=laea +lat_0={latitude:.6f} +lon_0={longitude:.6f} '
               '+datum=WGS84 +units=m +no_defs')
        return cls(spacing_km, crs=crs)

    @property
    def cell_area_km2(self) -> float:
        return np.sqrt(3.0) / 2.0 * self.spacing_km ** 2

    def _axial(self, lat, lon):
        x, y = self._forward.transform(np.asarray(lon, dtype=float),
                                       np.asarray(lat, dtype=float))
        x = np.asarray(x) / self._size_m
        y = np.asarray(y) / self._size_m
        q = np.sqrt(3.0) / 3.0 * x - y / 3.0
        r = 2.0 / 3.0 * y
        return _cube_round(q, r)

    def cell_of(self, lat, lon):
        """
        Cell id for one point or for arrays of points.

        Args:
            lat: Latitude in degrees (scalar or array)
            lon: Longitude in degrees (scalar or array)

        Returns:
            int for scalar input, int64 array otherwise
        """
        lat_arr = np.asarray(lat, dtype=float)
        lon_arr = np.asarray(lon, dtype=float)
        if np.isnan(lat_arr).any() or np.isnan(lon_arr).any():
            raise ValueError("Coordinates contain NaN values")

        q, r = self._axial(lat_arr, lon_arr)
        cell_ids = (q + _AXIAL_OFFSET) * _AXIAL_SPAN + (r + _AXIAL_OFFSET)

        if lat_arr.ndim == 0 and lon_arr.ndim == 0:
            return int(cell_ids)
        return np.asarray(cell_ids, dtype=np.int64)

    def cell_center(self, cell_id) -> Tuple[np.ndarray, np.ndarray]:
        """Latitude and longitude of cell centres, recomputed from the ids."""
        cell_id = np.asarray(cell_id, dtype=np.int64)
        q = cell_id // _AXIAL_SPAN - _AXIAL_OFFSET
        r = cell_id % _AXIAL_SPAN - _AXIAL_OFFSET

        x = self._size_m * (np.sqrt(3.0) * q + np.sqrt(3.0) / 2.0 * r)
        y = self._size_m * 1.5 * r
        lon, lat = self._inverse.transform(x, y)
        return lat, lon

    def __repr__(self):
        return f"HexGrid(spacing_km={self.spacing_km}, crs={self.crs!r})"


def assign_cells(df: pd.DataFrame, grid: HexGrid,
                 lat_col: str = LAT_COL,
                 lon_col: str = LON_COL) -> pd.DataFrame:
    """Return a copy of ``df`` with a ``cell`` column."""
    df = df.copy()
    df['cell'] = grid.cell_of(df[lat_col].to_numpy(), df[lon_col].to_numpy())
    return df
