from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import tempfile
from datetime import datetime
from typing import Dict, Optional

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.responses import PlainTextResponse, Response

from ..config import Config, load_config
from ..net.host import get_host_name
from ..net.readiness import SERVER_READY
from ..types import format_sockaddr
from .dispatcher import DialParamError, dial

app = FastAPI(title="netexec")

CFG: Optional[Config] = None
log = logging.getLogger(__name__)

# swapped out in tests; the fixture exits without draining in-flight work
_exit = os._exit

# handlers answer whatever method they are called with
ANY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def configure(cfg: Config) -> None:
    global CFG
    CFG = cfg


def _cfg() -> Config:
    global CFG
    if CFG is None:
        CFG = load_config()
    return CFG


async def form_values(request: Request) -> Dict[str, str]:
    """Query parameters merged with url-encoded or multipart form fields.

    The first value of a key wins, and a form field wins over the query string.
    """
    values: Dict[str, str] = {}
    for key, value in request.query_params.multi_items():
        values.setdefault(key, value)
    if request.headers.get("content-type", "").startswith(FORM_TYPES):
        body: Dict[str, str] = {}
        form = await request.form()
        for key, value in form.multi_items():
            if isinstance(value, str):
                body.setdefault(key, value)
        values.update(body)
    return values


def _json_or_417(payload: dict, status_code: int = 200, prefix: str = "") -> Response:
    try:
        body = json.dumps(payload)
    except (TypeError, ValueError) as e:
        return PlainTextResponse(f"{prefix}response could not be serialized. {e}", status_code=417)
    return Response(content=body, status_code=status_code, media_type="application/json")


@app.api_route("/clientip", methods=ANY_METHODS)
def clientip(request: Request):
    log.info("GET /clientip")
    client = request.client
    if client is None:
        return PlainTextResponse("")
    return PlainTextResponse(format_sockaddr(client.host, client.port))


@app.api_route("/echo", methods=ANY_METHODS)
def echo(form: Dict[str, str] = Depends(form_values)):
    msg = form.get("msg", "")
    log.info("GET /echo?msg=%s", msg)
    return PlainTextResponse(msg)


@app.api_route("/exit", methods=ANY_METHODS)
def exit_(form: Dict[str, str] = Depends(form_values)):
    code = form.get("code", "")
    log.info("GET /exit?code=%s", code)
    status = 0
    if code != "":
        try:
            status = int(code)
        except ValueError:
            return PlainTextResponse(f"argument 'code' must be an integer [0-127] or empty, got {json.dumps(code)}")
    _exit(status)


@app.api_route("/hostname", methods=ANY_METHODS)
def hostname():
    log.info("GET /hostname")
    return PlainTextResponse(get_host_name())


@app.api_route("/hostName", methods=ANY_METHODS)
def host_name_legacy():
    log.info("GET /hostName")
    return PlainTextResponse(get_host_name())


@app.api_route("/healthz", methods=ANY_METHODS)
def healthz():
    """200 while the UDP command listener is serving, 412 otherwise."""
    log.info("GET /healthz")
    if SERVER_READY.get():
        return Response(status_code=200)
    return Response(status_code=412)


@app.api_route("/shutdown", methods=ANY_METHODS)
def shutdown():
    log.info("GET /shutdown")
    _exit(0)


@app.api_route("/shell", methods=ANY_METHODS)
def shell(form: Dict[str, str] = Depends(form_values)):
    command = form.get("shellCommand", "") or form.get("cmd", "")
    log.info("GET /shell?cmd=%s", command)
    output: dict = {}
    try:
        proc = subprocess.run(
            [_cfg().shell_path, "-c", command],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
    except OSError as e:
        output["error"] = str(e)
    else:
        if proc.stdout:
            output["output"] = proc.stdout.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            output["error"] = f"exit status {proc.returncode}"
    log.info("Output: %s", output)
    return _json_or_417(output)


@app.api_route("/upload", methods=ANY_METHODS)
def upload(file: Optional[UploadFile] = File(None)):
    log.info("GET /upload")

    def _fail(message: str, err: object) -> Response:
        log.error("%s: %s", message, err)
        return _json_or_417({"error": message}, prefix=f"{message}. Also unable to serialize output. ")

    if file is None:
        return _fail("Unable to upload file.", "no 'file' field in form")

    try:
        out = tempfile.NamedTemporaryFile(dir=_cfg().upload_dir, prefix="upload", delete=False)
    except OSError as e:
        return _fail("Unable to open file for write", e)

    with out:
        try:
            shutil.copyfileobj(file.file, out)
        except OSError as e:
            return _fail("Unable to write file.", e)

    try:
        os.chmod(out.name, 0o700)
    except OSError as e:
        return _fail("Unable to chmod file.", e)

    log.info("Wrote upload to %s", out.name)
    return _json_or_417({"output": out.name}, status_code=201)


@app.api_route("/dial", methods=ANY_METHODS)
def dial_endpoint(params: Dict[str, str] = Depends(form_values)):
    log.info(
        "GET /dial?host=%s&protocol=%s&port=%s&request=%s&tries=%s",
        params.get("host", ""),
        params.get("protocol", ""),
        params.get("port", ""),
        params.get("request", ""),
        params.get("tries", ""),
    )
    try:
        outcome = dial(params, timeout=_cfg().dial_timeout_sec)
    except DialParamError as e:
        return PlainTextResponse(str(e), status_code=400)
    # per-attempt failures live in the body; the status stays 200
    return _json_or_417(outcome.to_dict())


# registered last: any path without its own handler answers with the time
@app.api_route("/{path:path}", methods=ANY_METHODS)
def root(path: str = ""):
    log.info("GET /%s", path)
    return PlainTextResponse(f"NOW: {datetime.now()}")
