from prometheus_client import Counter, Histogram, start_http_server

bot_updates_total = Counter(
    "bot_updates_total",
    "Total number of updates processed by bot",
)

bot_errors_total = Counter(
    "bot_errors_total",
    "Total number of errors in bot handlers",
)

webhook_errors_total = Counter(
    "webhook_errors_total",
    "Total number of rejected or failed inbound webhook calls",
    labelnames=["endpoint", "code"],
)

onboarding_total = Counter(
    "onboarding_total",
    "Tenant onboarding attempts by auth strategy and result",
    labelnames=["strategy", "result"],
)

provisioning_step_failures_total = Counter(
    "provisioning_step_failures_total",
    "Provisioning saga steps that aborted an onboarding",
    labelnames=["step"],
)

device_flow_outcomes_total = Counter(
    "device_flow_outcomes_total",
    "Terminal states reached by device-authorization pollers",
    labelnames=["outcome"],
)

otp_relayed_total = Counter(
    "otp_relayed_total",
    "OTP messages forwarded from tenant actions to Telegram",
    labelnames=["result"],
)

outbound_retries_total = Counter(
    "outbound_retries_total",
    "Transport-level retries of outbound calls",
    labelnames=["target"],
)

action_build_wait_seconds = Histogram(
    "action_build_wait_seconds",
    "Time spent waiting for a tenant action to reach the built state",
    buckets=[1.5, 3.0, 6.0, 12.0, 30.0, 60.0, 120.0],
)


def setup_metrics_server(port: int) -> None:
    # HTTP-сервер метрик в отдельном потоке
    start_http_server(port)
