# scripts/demo_dispatch.py
import argparse
import asyncio
import os

from evdispatch.core import log
from evdispatch.core.context import Context
from evdispatch.core.contracts import Event, FuncHandler
from evdispatch.core.metrics import force_emit, start_exporter, stop_exporter
from evdispatch.synth.mock_handlers import FailingHandler, RecordingHandler
from evdispatch.wire_config import build_from_yaml


async def main(cfg_path: str, fail: bool):
    log.setup()
    lg = log.get("demo.dispatch")
    start_exporter(interval_sec=float(os.getenv("METRICS_INTERVAL", "5")),
                   json_mode=(os.getenv("LOG_JSON", "0") == "1"))

    dispatcher, wired = build_from_yaml(cfg_path)
    lg.info("wired %d handler(s) from %s", len(wired), cfg_path)

    billing = RecordingHandler("billing")
    mailer = FuncHandler(lambda ctx, ev: lg.info("mail for order %s", ev.payload["id"]), label="mailer")
    dispatcher.register("order.created", billing)
    dispatcher.register("order.created", mailer)
    if fail:
        dispatcher.register("order.created", FailingHandler(label="inventory"))

    ctx = Context.background().with_timeout(2.0)
    errs = await dispatcher.dispatch(ctx, Event("order.created", {"id": 42}))
    lg.info("order.created -> %d error(s) %s", len(errs), [str(e) for e in errs])
    lg.info("billing saw %s", [ev.payload for ev in billing.events])

    errs = await dispatcher.dispatch(ctx, Event("order.shipped", {"id": 42}))
    lg.info("order.shipped -> %s", [str(e) for e in errs])

    force_emit()
    stop_exporter()


if __name__ == "__main__":
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", default=os.path.join(os.path.dirname(__file__), "..", "configs", "dispatcher.yaml"))
    ap.add_argument("--fail", action="store_true", help="add a failing inventory handler")
    args = ap.parse_args()
    asyncio.run(main(args.config, args.fail))
