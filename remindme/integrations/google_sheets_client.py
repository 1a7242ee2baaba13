from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

import gspread

from remindme.config import BotConfig


DEFAULT_HEADERS = {
    "Reminders": [
        "comment_id",
        "comment_url",
        "issue_url",
        "author",
        "phrase",
        "remind_at",
        "created_at",
    ],
    "State": ["state_key", "state_value", "updated_at"],
}


@dataclass
class SheetsRowRef:
    row_number: int
    values: Dict[str, str]


class GoogleSheetsClient:
    def __init__(self, config: BotConfig, client: Optional[gspread.Client] = None):
        if client is not None:
            gc = client
        elif config.google_service_account_json:
            gc = gspread.service_account_from_dict(config.google_service_account_json)
        else:
            gc = gspread.service_account(filename=config.google_service_account_path)
        self.config = config
        self._spreadsheet = gc.open_by_key(config.google_spreadsheet_id)

    @staticmethod
    def _now_utc_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    def get_or_create_worksheet(self, name: str, headers: Optional[List[str]] = None):
        try:
            ws = self._spreadsheet.worksheet(name)
        except gspread.WorksheetNotFound:
            ws = self._spreadsheet.add_worksheet(title=name, rows=200, cols=len(headers or []) or 10)
        if headers:
            existing = ws.row_values(1)
            if existing != headers:
                ws.clear()
                ws.append_row(headers)
        return ws

    def ensure_default_schema(self) -> None:
        mapping = {
            self.config.reminders_tab_name: DEFAULT_HEADERS["Reminders"],
            self.config.state_tab_name: DEFAULT_HEADERS["State"],
        }
        for tab, headers in mapping.items():
            self.get_or_create_worksheet(tab, headers=headers)

    def read_rows(self, tab_name: str) -> List[Dict[str, str]]:
        ws = self.get_or_create_worksheet(tab_name)
        rows = ws.get_all_records(default_blank="")
        return [{k: str(v).strip() if v is not None else "" for k, v in row.items()} for row in rows]

    def get_rows_with_ref(self, tab_name: str) -> List[SheetsRowRef]:
        ws = self.get_or_create_worksheet(tab_name)
        values = ws.get_all_values()
        if not values:
            return []
        headers = values[0]
        refs: List[SheetsRowRef] = []
        for idx, row in enumerate(values[1:], start=2):
            padded = row + ([""] * (len(headers) - len(row)))
            refs.append(
                SheetsRowRef(
                    row_number=idx,
                    values={headers[i]: str(padded[i]).strip() for i in range(len(headers))},
                )
            )
        return refs

    def append_rows(self, tab_name: str, rows: Iterable[Dict[str, str]]) -> int:
        rows = list(rows)
        if not rows:
            return 0
        ws = self.get_or_create_worksheet(tab_name)
        headers = ws.row_values(1)
        if not headers:
            headers = list(rows[0].keys())
            ws.append_row(headers)
        ws.append_rows([[row.get(h, "") for h in headers] for row in rows])
        return len(rows)

    def get_state(self) -> Dict[str, str]:
        rows = self.read_rows(self.config.state_tab_name)
        return {row.get("state_key", ""): row.get("state_value", "") for row in rows if row.get("state_key")}

    def set_state(self, state_key: str, state_value: str) -> None:
        ws = self.get_or_create_worksheet(self.config.state_tab_name, headers=DEFAULT_HEADERS["State"])
        refs = self.get_rows_with_ref(self.config.state_tab_name)
        headers = ws.row_values(1)
        value_col = headers.index("state_value") + 1
        updated_col = headers.index("updated_at") + 1
        for ref in refs:
            if ref.values.get("state_key") == state_key:
                ws.update_cell(ref.row_number, value_col, state_value)
                ws.update_cell(ref.row_number, updated_col, self._now_utc_iso())
                return
        ws.append_row([state_key, state_value, self._now_utc_iso()])

    def append_reminders(self, rows: Iterable[Dict[str, str]]) -> int:
        """Append reminder rows to the Reminders tab."""
        stamped = []
        for row in rows:
            row = dict(row)
            row.setdefault("created_at", self._now_utc_iso())
            stamped.append(row)
        return self.append_rows(self.config.reminders_tab_name, stamped)
