from datetime import date
from typing import Optional
from pydantic import BaseModel


class ReportRequest(BaseModel):
    report_type: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
