from prometheus_client import Counter, Histogram, Gauge, generate_latest

# Define metrics
connection_attempts = Counter(
    'seopage_chat_connection_attempts_total',
    'WebSocket connection attempts',
    ['outcome']
)

reconnects_scheduled = Counter(
    'seopage_chat_reconnects_scheduled_total',
    'Reconnect attempts scheduled after an abnormal close'
)

close_events = Counter(
    'seopage_chat_close_events_total',
    'Socket close events by close code',
    ['code']
)

active_sessions = Gauge(
    'seopage_chat_active_sessions',
    'Number of open chat sessions'
)

frames_received = Counter(
    'seopage_chat_frames_received_total',
    'Inbound frames by discriminator',
    ['frame_type']
)

frame_errors = Counter(
    'seopage_chat_frame_errors_total',
    'Inbound frames that could not be parsed'
)

heartbeats = Counter(
    'seopage_chat_heartbeats_total',
    'Heartbeat frames by direction',
    ['direction']
)

search_requests = Counter(
    'seopage_chat_search_requests_total',
    'Competitor search requests by outcome',
    ['outcome']
)

search_latency = Histogram(
    'seopage_chat_search_latency_seconds',
    'Competitor search latency',
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 120.0]
)


def render_metrics() -> bytes:
    return generate_latest()
