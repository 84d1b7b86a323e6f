from secmon.monitor import RequestSnapshot


def make_snapshot(ip="1.2.3.4", method="GET", path="/search", body=None, query=None, params=None, **kwargs):
    return RequestSnapshot(
        method=method,
        path=path,
        ip=ip,
        user_agent=kwargs.pop("user_agent", "pytest"),
        body=body,
        query=query if query is not None else {},
        params=params if params is not None else {},
        **kwargs,
    )


def events_of_type(monitor, event_type):
    return [record for record in monitor.event_log.read(0) if record.get("type") == event_type]
