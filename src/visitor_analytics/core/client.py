"""
HTTP client for the visitors table in a Cloudflare D1 database.

All values are bound parameters. Column names used for grouping are
checked against an allow-list before they are put into SQL.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from ..errors import ExternalDependencyError
from .models import VisitorRow

# Columns that can be grouped or filtered on
GROUPABLE_COLUMNS = frozenset({
    "country_code", "region", "city",
    "browser_name", "browser_version", "os_name", "device_type", "platform",
    "language", "user_language", "timezone",
    "referrer", "page_visited",
})

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS {table} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    ip_address TEXT NOT NULL,
    user_agent TEXT,
    browser_name TEXT,
    browser_version TEXT,
    os_name TEXT,
    device_type TEXT,
    platform TEXT,
    screen_width INTEGER,
    screen_height INTEGER,
    viewport_width INTEGER,
    viewport_height INTEGER,
    color_depth INTEGER,
    timezone_offset INTEGER,
    timezone TEXT,
    language TEXT,
    user_language TEXT,
    referrer TEXT,
    page_visited TEXT,
    canvas_fingerprint TEXT,
    audio_fingerprint TEXT,
    webgl_renderer TEXT,
    touch_support INTEGER,
    hardware_concurrency INTEGER,
    country_code TEXT,
    region TEXT,
    city TEXT,
    latitude REAL,
    longitude REAL,
    consent_granted INTEGER NOT NULL DEFAULT 1
)
"""

INDEX_SQL = "CREATE INDEX IF NOT EXISTS idx_{table}_created_at ON {table} (created_at)"


def format_timestamp(value: datetime) -> str:
    """Format a datetime the way SQLite's CURRENT_TIMESTAMP stores it (UTC)."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%d %H:%M:%S")


class VisitorStore:
    """Client for the visitors table in Cloudflare D1."""

    def __init__(
        self,
        d1_database_id: str,
        cf_account_id: str,
        cf_api_token: str,
        table: str = "visitors",
    ):
        if not table.isidentifier():
            raise ValueError(f"Invalid table name: {table!r}")
        self.database_id = d1_database_id
        self.account_id = cf_account_id
        self.api_token = cf_api_token
        self.table = table
        self.base_url = f"https://api.cloudflare.com/client/v4/accounts/{cf_account_id}/d1/database/{d1_database_id}"

    async def _query(self, sql: str, params: Optional[list] = None) -> list[dict]:
        """Execute a SQL query against D1.

        Raises:
            ExternalDependencyError: On transport errors, HTTP errors or an
                unsuccessful D1 response
        """
        try:
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.post(
                    f"{self.base_url}/query",
                    headers={
                        "Authorization": f"Bearer {self.api_token}",
                        "Content-Type": "application/json",
                    },
                    json={"sql": sql, "params": params or []},
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ExternalDependencyError("D1 query") from e

        if not data.get("success"):
            raise ExternalDependencyError("D1 query", detail=str(data.get("errors")))

        results = data.get("result", [])
        if results and len(results) > 0:
            return results[0].get("results", [])
        return []

    def _check_column(self, column: str) -> str:
        if column not in GROUPABLE_COLUMNS:
            raise ValueError(f"Cannot group or filter on column: {column!r}")
        return column

    def _build_where(
        self,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        filters: Optional[Dict[str, Any]] = None,
        not_null: Optional[List[str]] = None,
    ) -> tuple[str, list]:
        """Build a WHERE clause. Returns (sql_string, params_list)."""
        clauses = []
        params: list = []

        if since is not None:
            clauses.append("created_at >= ?")
            params.append(format_timestamp(since))
        if until is not None:
            clauses.append("created_at < ?")
            params.append(format_timestamp(until))
        for column, value in (filters or {}).items():
            clauses.append(f"{self._check_column(column)} = ?")
            params.append(value)
        for column in not_null or []:
            clauses.append(f"{column} IS NOT NULL AND {column} != ''")

        if not clauses:
            return "", params
        return "WHERE " + " AND ".join(clauses), params

    # =========================================================================
    # SCHEMA
    # =========================================================================

    async def ensure_schema(self) -> None:
        """Create the visitors table and its index if missing."""
        await self._query(SCHEMA_SQL.format(table=self.table))
        await self._query(INDEX_SQL.format(table=self.table))

    # =========================================================================
    # WRITES
    # =========================================================================

    async def insert_visitor(self, row: VisitorRow) -> Optional[int]:
        """Insert one row and return its id."""
        columns = VisitorRow.column_names()
        values = row.model_dump(include=set(columns))
        params = [
            int(v) if isinstance(v, bool) else v
            for v in (values[c] for c in columns)
        ]
        placeholders = ", ".join("?" for _ in columns)

        results = await self._query(
            f"INSERT INTO {self.table} ({', '.join(columns)}) VALUES ({placeholders}) RETURNING id",
            params,
        )
        return results[0].get("id") if results else None

    async def delete_by_ip(self, ip_address: str) -> int:
        """Delete every row for an (anonymized) address. Returns the count."""
        results = await self._query(
            f"DELETE FROM {self.table} WHERE ip_address = ? RETURNING id",
            [ip_address],
        )
        return len(results)

    async def purge_older_than(self, cutoff: datetime) -> int:
        """Delete rows created before `cutoff`. Returns the count."""
        results = await self._query(
            f"DELETE FROM {self.table} WHERE created_at < ? RETURNING id",
            [format_timestamp(cutoff)],
        )
        return len(results)

    # =========================================================================
    # COUNTS
    # =========================================================================

    async def count_visitors(
        self,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        distinct_ip: bool = False,
    ) -> int:
        """Count rows, or distinct addresses, in a time window."""
        where, params = self._build_where(since=since, until=until)
        expr = "COUNT(DISTINCT ip_address)" if distinct_ip else "COUNT(*)"
        results = await self._query(
            f"SELECT {expr} as count FROM {self.table} {where}",
            params,
        )
        return (results[0].get("count") or 0) if results else 0

    async def _count_grouped(
        self,
        expression: str,
        not_null: list[str],
        since: Optional[datetime],
        limit: Optional[int],
        filters: Optional[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        where, params = self._build_where(since=since, filters=filters, not_null=not_null)
        limit_sql = ""
        if limit is not None:
            limit_sql = "LIMIT ?"
            params.append(limit)

        return await self._query(
            f"""
            SELECT
                {expression} as value,
                COUNT(*) as count
            FROM {self.table}
            {where}
            GROUP BY value
            ORDER BY count DESC, value ASC
            {limit_sql}
            """,
            params,
        )

    async def count_by(
        self,
        column: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = 10,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Group rows by one column. Returns [{value, count}] descending."""
        column = self._check_column(column)
        return await self._count_grouped(column, [column], since, limit, filters)

    async def count_screen_resolutions(
        self,
        since: Optional[datetime] = None,
        limit: Optional[int] = 10,
    ) -> List[Dict[str, Any]]:
        """Group by "WIDTHxHEIGHT"."""
        return await self._count_grouped(
            "(screen_width || 'x' || screen_height)",
            ["screen_width", "screen_height"],
            since, limit, None,
        )

    async def count_browser_versions(
        self,
        since: Optional[datetime] = None,
        limit: Optional[int] = 20,
    ) -> List[Dict[str, Any]]:
        """Group by "Browser version", with "Unknown" for a missing version."""
        return await self._count_grouped(
            "(browser_name || ' ' || COALESCE(NULLIF(browser_version, ''), 'Unknown'))",
            ["browser_name"],
            since, limit, None,
        )

    async def daily_counts(self, since: datetime) -> List[Dict[str, Any]]:
        """Visits and distinct addresses per UTC day, oldest first."""
        where, params = self._build_where(since=since)
        return await self._query(
            f"""
            SELECT
                date(created_at) as date,
                COUNT(*) as visitors,
                COUNT(DISTINCT ip_address) as unique_visitors
            FROM {self.table}
            {where}
            GROUP BY date(created_at)
            ORDER BY date ASC
            """,
            params,
        )

    async def consent_counts(self) -> Dict[str, int]:
        """Totals of consented and non-consented rows."""
        results = await self._query(
            f"""
            SELECT
                COUNT(*) as total_records,
                SUM(CASE WHEN consent_granted = 1 THEN 1 ELSE 0 END) as consented_records,
                SUM(CASE WHEN consent_granted = 0 THEN 1 ELSE 0 END) as non_consented_records
            FROM {self.table}
            """
        )
        row = results[0] if results else {}
        return {
            "total_records": row.get("total_records") or 0,
            "consented_records": row.get("consented_records") or 0,
            "non_consented_records": row.get("non_consented_records") or 0,
        }

    # =========================================================================
    # ROWS
    # =========================================================================

    async def geo_points(self, limit: int = 1000) -> List[Dict[str, Any]]:
        """Most recent visits that have coordinates."""
        return await self._query(
            f"""
            SELECT latitude, longitude, country_code, city
            FROM {self.table}
            WHERE latitude IS NOT NULL AND longitude IS NOT NULL
            ORDER BY created_at DESC
            LIMIT ?
            """,
            [limit],
        )

    async def recent_visitors(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent rows, newest first."""
        return await self._query(
            f"SELECT * FROM {self.table} ORDER BY created_at DESC LIMIT ?",
            [limit],
        )

    async def ping(self) -> bool:
        """Round-trip a trivial query."""
        results = await self._query("SELECT 1 as ok")
        return bool(results and results[0].get("ok") == 1)
