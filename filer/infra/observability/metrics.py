from prometheus_client import Counter, Histogram, make_asgi_app

# 低基数标签：使用路由模板（如 /api/v1/filer/{backend}/{path}），避免对象路径导致高基数
REQUESTS = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "route", "status"],
)

LATENCY = Histogram(
    "http_request_duration_seconds",
    "Request latency in seconds",
    ["method", "route"],
)

OBJECTS_DELETED = Counter(
    "filer_objects_deleted_total",
    "Objects removed through single or bulk deletes",
    ["backend"],
)

BYTES_UPLOADED = Counter(
    "filer_bytes_uploaded_total",
    "Bytes committed to storage backends",
    ["backend"],
)

# /metrics 端点 ASGI 应用
metrics_app = make_asgi_app()
