"""
Stock Issues Service
Consumption documents that deduct stock at its current WAC
"""
from typing import Dict, List, Optional, Tuple
from datetime import datetime
from sqlalchemy.orm import Session, selectinload
import logging

from stockroom.core.exceptions import NotFoundError
from stockroom.core.security import log_user_action
from stockroom.models.auth import User
from stockroom.models.documents import CostCentre, Issue, IssueLine
from stockroom.models.period import Period
from stockroom.services.document_numbers import ISSUE_PREFIX, next_document_number
from stockroom.services.period.period_service import PeriodService
from stockroom.services.stock.ledger import StockLedger, ZERO, round_money, to_decimal
from stockroom.services.stock.stock_master import StockMasterService, get_active_items, require_active_location

logger = logging.getLogger(__name__)


class IssueService:
    """Stock issue processing"""

    def __init__(self, db: Session, current_user: Optional[User] = None):
        self.db = db
        self.current_user = current_user
        self.ledger = StockLedger(db)

    def post_issue(self, location_id: int, period: Period, issue_data: Dict) -> Issue:
        """
        Post an issue into the open period.

        Every line is checked before anything is written so a shortfall
        reports all short items at once. WAC is never changed by an issue.
        """
        location = require_active_location(StockMasterService(self.db).get_location(location_id))
        PeriodService(self.db, self.current_user).ensure_location_accepts_postings(period, location_id)

        lines = issue_data["lines"]
        items = get_active_items(self.db, [line["item_id"] for line in lines])
        self.ledger.ensure_sufficient(location.id, [(line["item_id"], line["quantity"]) for line in lines])

        cost_centre = issue_data.get("cost_centre") or CostCentre.FOOD
        try:
            issue = Issue(
                issue_no=next_document_number(self.db, Issue.issue_no, ISSUE_PREFIX),
                location_id=location.id,
                period_id=period.id,
                issue_date=issue_data["issue_date"],
                cost_centre=getattr(cost_centre, "value", cost_centre),
                total_value=ZERO,
                posted_at=datetime.utcnow(),
                created_by=self.current_user.id if self.current_user else None
            )
            self.db.add(issue)
            self.db.flush()

            total = ZERO
            for line_data in lines:
                item = items[line_data["item_id"]]
                quantity = to_decimal(line_data["quantity"])
                stock = self.ledger.deduct(location.id, item.id, quantity)
                wac = to_decimal(stock.wac)
                line = IssueLine(
                    issue_id=issue.id,
                    item_id=item.id,
                    quantity=quantity,
                    wac_at_issue=wac,
                    line_value=round_money(quantity * wac)
                )
                self.db.add(line)
                total += line.line_value

            issue.total_value = round_money(total)

            log_user_action(
                db=self.db,
                user=self.current_user,
                action="POST_ISSUE",
                table="issues",
                key=issue.issue_no,
                new_values={
                    "location": location.code,
                    "cost_centre": issue.cost_centre,
                    "lines": len(lines),
                    "total_value": issue.total_value,
                },
                module="STOCK"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(issue)
        logger.info(f"Issue {issue.issue_no} posted at {location.code}: total {issue.total_value}")
        return issue

    def get_issue(self, issue_id: int) -> Issue:
        issue = self.db.query(Issue).options(selectinload(Issue.lines)).filter(Issue.id == issue_id).first()
        if issue is None:
            raise NotFoundError(f"Issue {issue_id} not found", code="ISSUE_NOT_FOUND")
        return issue

    def list_issues(
        self,
        location_id: int,
        period_id: Optional[int] = None,
        cost_centre: Optional[str] = None,
        skip: int = 0,
        limit: int = 100
    ) -> Tuple[List[Issue], int]:
        query = self.db.query(Issue).filter(Issue.location_id == location_id)
        if period_id is not None:
            query = query.filter(Issue.period_id == period_id)
        if cost_centre:
            query = query.filter(Issue.cost_centre == cost_centre)

        total = query.count()
        issues = query.options(selectinload(Issue.lines)).order_by(
            Issue.issue_date.desc(), Issue.id.desc()
        ).offset(skip).limit(limit).all()
        return issues, total
