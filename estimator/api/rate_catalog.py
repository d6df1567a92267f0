"""Client for the reference rate schedules (SSR / CSR catalogs).

Only used to pre-fill a new rate's description, unit and value; nothing in
the estimate engine depends on the catalog being reachable.
"""
import logging

import requests
from flask import current_app
from requests.exceptions import HTTPError, RequestException


def _headers():
    headers = {'Accept': 'application/json'}
    api_key = current_app.config.get('RATE_CATALOG_API_KEY')
    if api_key:
        headers['Authorization'] = f'Bearer {api_key}'
    return headers


def get_catalog_items(query, schedule=None):
    """Return raw catalog rows matching ``query``.

    Any HTTP or network failure is logged and turned into an empty list so a
    catalog outage only disables the search box.
    """
    base_url = (current_app.config.get('RATE_CATALOG_URL') or '').rstrip('/')
    if not base_url:
        return []

    params = {'q': query}
    if schedule:
        params['schedule'] = schedule
    try:
        resp = requests.get(
            f"{base_url}/items",
            params=params,
            headers=_headers(),
            timeout=current_app.config.get('RATE_CATALOG_TIMEOUT', 10),
        )
        resp.raise_for_status()
        payload = resp.json()
    except HTTPError as e:
        logging.warning("rate catalog error (%s): %s", e.response.status_code, e)
        return []
    except RequestException as e:
        logging.warning("rate catalog network error: %s", e)
        return []

    # the catalog answers either {"items": [...]} or a bare list
    if isinstance(payload, dict):
        payload = payload.get('items')
    if not isinstance(payload, list):
        logging.warning("rate catalog returned an unexpected payload: %r", type(payload).__name__)
        return []
    return [row for row in payload if isinstance(row, dict)]


def search_rates(query, schedule=None):
    """
    Returns a list of dicts with:
      item_no, description (<=200 chars), unit, rate, reference
    """
    out = []
    for row in get_catalog_items(query, schedule):
        desc = (row.get('description') or '').strip()
        if len(desc) > 200:
            desc = desc[:200] + '…'
        try:
            rate = float(row.get('rate') or 0)
        except (TypeError, ValueError):
            rate = 0.0
        out.append({
            'item_no':     row.get('item_no'),
            'description': desc,
            'unit':        row.get('unit') or '',
            'rate':        rate,
            'reference':   row.get('reference'),
        })
    return out
