"""
بث التغييرات اللحظية (Server-Sent Events)
===========================================

GET /api/changes/stream?tables=transaction,bank_account

كل حدث: data: {"table": ..., "office_id": ..., "event": ..., "id": ...}
"""

import json
import queue

from flask import Blueprint, Response, g, request

from moaqeb import change_feed
from moaqeb.auth_decorators import with_ledger_context

changes_bp = Blueprint('changes', __name__)

HEARTBEAT_SECONDS = 15


def _sse(payload):
    return f'data: {json.dumps(payload, ensure_ascii=False)}\n\n'


@changes_bp.route('/changes/stream', methods=['GET'])
@with_ledger_context
def stream_changes():
    feed_key = g.ledger.feed_key
    tables = [t.strip() for t in (request.args.get('tables') or '').split(',') if t.strip()]
    events = queue.Queue()
    unsubscribers = [change_feed.subscribe(table, feed_key, events.put) for table in (tables or [None])]

    def generate():
        try:
            yield ': connected\n\n'
            while True:
                try:
                    change = events.get(timeout=HEARTBEAT_SECONDS)
                except queue.Empty:
                    yield ': heartbeat\n\n'
                    continue
                yield _sse(change)
        finally:
            for unsubscribe in unsubscribers:
                unsubscribe()

    return Response(generate(), mimetype='text/event-stream', headers={
        'Cache-Control': 'no-cache',
        'X-Accel-Buffering': 'no',
    })
