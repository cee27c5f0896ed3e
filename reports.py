"""
Read-only reporting over sales and leaves.

Sale totals are computed by MongoDB aggregation pipelines. Rows written
before totalAmount was always stored fall back to quantity x price.
"""

import re
from typing import List, Optional

from pymongo.database import Database

from database import LEAVES, SALES, USERS, get_documents
from errors import ValidationError
from logs import log
from schemas import leave_duration

MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

SALE_AMOUNT = {"$ifNull": ["$totalAmount", {"$multiply": ["$quantity", "$price"]}]}


def month_filter(month: str) -> dict:
    """Prefix match on the ``date`` string for a ``YYYY-MM`` month."""
    month = month.strip()
    if not MONTH_PATTERN.match(month):
        raise ValidationError(f"Month must be formatted as YYYY-MM, got '{month}'")
    return {"date": {"$regex": f"^{month}"}}


def sale_amount(doc: dict) -> float:
    amount = doc.get("totalAmount")
    if amount is None:
        amount = (doc.get("quantity") or 0) * (doc.get("price") or 0)
    return float(amount)


def sales_match(salesman_id: Optional[str] = None, start: Optional[str] = None, end: Optional[str] = None) -> dict:
    match: dict = {}
    if salesman_id:
        match["salesmanId"] = salesman_id
    if start or end:
        span = {}
        if start:
            span["$gte"] = start
        if end:
            span["$lte"] = end
        match["date"] = span
    return match


def sales_summary(
    db: Database,
    salesman_id: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> dict:
    pipeline = [
        {"$match": sales_match(salesman_id, start, end)},
        {"$group": {
            "_id": None,
            "totalAmount": {"$sum": SALE_AMOUNT},
            "totalQuantity": {"$sum": "$quantity"},
            "totalTransactions": {"$sum": 1},
        }},
    ]
    res = list(db[SALES].aggregate(pipeline))
    if not res:
        return {"totalAmount": 0, "totalQuantity": 0, "totalTransactions": 0}
    s = res[0]
    return {
        "totalAmount": round(s.get("totalAmount", 0), 2),
        "totalQuantity": s.get("totalQuantity", 0),
        "totalTransactions": s.get("totalTransactions", 0),
    }


def brand_totals(
    db: Database,
    salesman_id: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> List[dict]:
    pipeline = [
        {"$match": sales_match(salesman_id, start, end)},
        {"$group": {
            "_id": "$brand",
            "totalSales": {"$sum": SALE_AMOUNT},
            "totalQuantity": {"$sum": "$quantity"},
            "count": {"$sum": 1},
        }},
        {"$sort": {"totalSales": -1, "_id": 1}},
        {"$project": {"_id": 0, "brand": "$_id", "totalSales": 1, "totalQuantity": 1, "count": 1}},
    ]
    return [{**row, "totalSales": round(row["totalSales"], 2)} for row in db[SALES].aggregate(pipeline)]


def salesman_totals(db: Database, start: Optional[str] = None, end: Optional[str] = None) -> List[dict]:
    pipeline = [
        {"$match": sales_match(None, start, end)},
        # $first below takes the name of the earliest sale
        {"$sort": {"date": 1, "_id": 1}},
        {"$group": {
            "_id": "$salesmanId",
            "salesmanName": {"$first": "$salesmanName"},
            "totalSales": {"$sum": SALE_AMOUNT},
            "totalQuantity": {"$sum": "$quantity"},
            "count": {"$sum": 1},
        }},
        {"$sort": {"totalSales": -1, "_id": 1}},
        {"$project": {
            "_id": 0,
            "salesmanId": "$_id",
            "salesmanName": 1,
            "totalSales": 1,
            "totalQuantity": 1,
            "count": 1,
        }},
    ]
    return [{**row, "totalSales": round(row["totalSales"], 2)} for row in db[SALES].aggregate(pipeline)]


def monthly_sales(db: Database, month: str, salesman_id: Optional[str] = None) -> dict:
    query = month_filter(month)
    if salesman_id:
        query["salesmanId"] = salesman_id
    sales = get_documents(db, SALES, query, sort=[("date", -1)])
    return {
        "month": month.strip(),
        "sales": sales,
        "totalAmount": round(sum(sale_amount(s) for s in sales), 2),
        "totalTransactions": len(sales),
    }


def leave_balance(db: Database, salesman_id: str, year: int) -> dict:
    """Days of approved leave starting in ``year`` for one salesman.

    A salesman has a handful of leaves per year, so the spans are summed
    here rather than in a pipeline. Leaves with unreadable dates are logged
    and left out.
    """
    query = {"salesmanId": salesman_id, "status": "approved", "fromDate": {"$regex": f"^{year:04d}-"}}
    days = 0
    counted = 0
    for leave in db[LEAVES].find(query, {"fromDate": 1, "toDate": 1}):
        try:
            days += leave_duration(leave["fromDate"], leave.get("toDate") or leave["fromDate"])
        except (TypeError, ValueError):
            log.warning("Leave %s has unreadable dates, left out of the balance", leave["_id"])
            continue
        counted += 1
    return {"salesmanId": salesman_id, "year": year, "days": days, "leaves": counted}


def dashboard_stats(db: Database) -> dict:
    summary = sales_summary(db)
    return {
        "totalAmount": summary["totalAmount"],
        "totalTransactions": summary["totalTransactions"],
        "totalSalesmen": db[USERS].count_documents({"role": "salesman"}),
    }
