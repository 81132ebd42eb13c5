"""Processes and tasks shared by the test modules (importable as module:function)."""

from runsitter.context import BranchFailure
from runsitter.tasks import define_task, local_task

greet = define_task(
    "sample-greet",
    lambda args, tctx: {"kind": "agent", "title": f"Greet {args['name']}"},
    labels=("agent",),
)
double = local_task("sample-double", lambda n: n * 2)


def _maybe_fail(args):
    if args.get("fail"):
        raise ValueError(f"branch {args['value']} refused")
    return args["value"]


maybe_fail = local_task("sample-maybe-fail", _maybe_fail)


def immediate(inputs, ctx):
    return {"ok": True, "inputs": inputs}


def one_delegated(inputs, ctx):
    result = ctx.task(greet, {"name": inputs["name"]})
    return {"greeting": result}


def local_chain(inputs, ctx):
    first = ctx.task(double, inputs["n"])
    return ctx.task(double, first)


def with_breakpoint(inputs, ctx):
    answer = ctx.breakpoint("Ship it?", title="Release", context={"version": inputs.get("version")})
    return {"approved": answer["approved"], "response": answer.get("response")}


def partial_failure(inputs, ctx):
    results = ctx.parallel.map(maybe_fail, [
        {"value": "a"},
        {"value": "b", "fail": True},
        {"value": "c"},
    ])
    return [
        {"failed": r.error} if isinstance(r, BranchFailure) else r
        for r in results
    ]


def raises(inputs, ctx):
    raise RuntimeError("process blew up")


def two_gates(inputs, ctx):
    first = ctx.breakpoint("Build it?")
    second = ctx.breakpoint("Release it?")
    return [first["approved"], second["approved"]]
