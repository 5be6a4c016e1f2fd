"""Prometheus metrics shared by the web process and background jobs."""

from prometheus_client import Counter, Histogram

api_requests_total = Counter('api_requests_total', 'Total API requests', ['method', 'endpoint', 'status'])
api_request_duration = Histogram('api_request_duration_seconds', 'API request duration')
messages_received = Counter('whatsapp_messages_received_total', 'Inbound WhatsApp messages')
appointments_total = Counter('appointments_total', 'Appointment lifecycle operations', ['operation', 'outcome'])
calendar_sync_runs = Counter('calendar_sync_runs_total', 'Calendar reconciliation runs per business', ['outcome'])
cleanup_runs = Counter('cleanup_runs_total', 'Cleanup sweeper steps', ['step', 'outcome'])
