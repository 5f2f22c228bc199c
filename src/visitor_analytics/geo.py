"""IP geolocation using a local MaxMind GeoLite2 database."""

import logging
import os
from dataclasses import asdict, dataclass
from typing import Optional

import geoip2.database
import geoip2.errors

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeoLocation:
    """Coarse location for an address. Every field may be None."""
    country_code: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def found(self) -> bool:
        return self.country_code is not None

    def to_dict(self) -> dict:
        return asdict(self)


class GeoLocator:
    """Looks up addresses in a GeoLite2 City or Country database.

    The reader is opened on first use. A missing or unreadable database
    disables enrichment instead of failing requests.
    """

    def __init__(self, database_path: Optional[str] = None):
        self.database_path = database_path
        self._reader = None
        self._unavailable = False

    def _get_reader(self):
        if self._reader is not None or self._unavailable:
            return self._reader
        if not self.database_path or not os.path.exists(self.database_path):
            logger.info("GeoIP database not found, geo enrichment disabled")
            self._unavailable = True
            return None
        try:
            self._reader = geoip2.database.Reader(self.database_path)
        except (OSError, ValueError, RuntimeError) as e:
            logger.error(f"Could not open GeoIP database {self.database_path}: {e}")
            self._unavailable = True
        return self._reader

    def lookup(self, ip: Optional[str]) -> GeoLocation:
        """Return the location of `ip`, empty when unknown."""
        if not ip:
            return GeoLocation()

        reader = self._get_reader()
        if reader is None:
            return GeoLocation()

        try:
            if "City" in reader.metadata().database_type:
                response = reader.city(ip)
                return GeoLocation(
                    country_code=response.country.iso_code,
                    region=response.subdivisions.most_specific.iso_code,
                    city=response.city.name,
                    latitude=response.location.latitude,
                    longitude=response.location.longitude,
                )
            response = reader.country(ip)
            return GeoLocation(country_code=response.country.iso_code)
        except geoip2.errors.AddressNotFoundError:
            return GeoLocation()
        except ValueError:
            # Not an IP address (e.g. an anonymized IPv6 with a stray group)
            logger.debug(f"GeoIP lookup skipped for malformed address {ip!r}")
            return GeoLocation()
        except geoip2.errors.GeoIP2Error as e:
            logger.warning(f"GeoIP lookup failed for {ip!r}: {e}")
            return GeoLocation()

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None
