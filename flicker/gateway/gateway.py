"""
API Gateway - the proxy between the browser and Runway
Accepts uploads and JSON actions on /ai, submits generation jobs and relays
task status back to the browser, which polls until the task is terminal.
Exposes Prometheus metrics for observability

REQUEST FLOW
============
1. Browser POSTs an image + prompt (multipart) or a JSON action to /ai
2. Gateway submits the job to Runway and gets back a task id
3. Gateway records the job kind (image/video) in Redis under that task id
4. Browser polls {"action": "status", "taskId": ...} every few seconds
5. Gateway asks Runway for the task status and relays it
6. On success the stored kind decides between imageUrl and videoUrl,
   and the Redis record is deleted after the response has gone out
"""

import base64
import time
from contextlib import asynccontextmanager
from typing import Optional

import aiohttp
import redis.asyncio as aioredis
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse
from prometheus_client import Counter, generate_latest, CONTENT_TYPE_LATEST
from starlette.datastructures import UploadFile

from flicker import config
from flicker.config import DEFAULTS
from flicker.errors import ConfigurationError, EmptyOutputError, ProxyError, ValidationError
from flicker.gateway.store import TaskInfoStore
from flicker.upstream.models import JobKind, TaskInfo, TaskStatus
from flicker.upstream.runway import GenerationBackend, RunwayClient

# Shared connections, created in lifespan
redis_pool: Optional[aioredis.ConnectionPool] = None
http_session: Optional[aiohttp.ClientSession] = None

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}
PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, X-Runway-Version",
}

# ============================================
# Prometheus Metrics
# ============================================
REQUEST_COUNT = Counter(
    "flicker_requests_total",
    "Total number of /ai requests",
    ["action", "outcome"]  # outcome: success or an error category
)

TASKS_FINISHED = Counter(
    "flicker_tasks_finished_total",
    "Tasks observed reaching a terminal state",
    ["kind", "status"]
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    global redis_pool, http_session

    print("🚀 Starting Flicker Gateway...")
    print(f"🎬 Upstream: {config.RUNWAY_API_BASE} (version {config.RUNWAY_API_VERSION})")
    if not config.RUNWAYML_API_KEY:
        print("❌ RUNWAYML_API_KEY is not set - every /ai request will fail")

    if config.REDIS_HOST:
        print(f"🔗 Task info store: Redis at {config.REDIS_HOST}:{config.REDIS_PORT}")
        auth = f":{config.REDIS_PASSWORD}@" if config.REDIS_PASSWORD else ""
        redis_pool = aioredis.ConnectionPool.from_url(
            f"redis://{auth}{config.REDIS_HOST}:{config.REDIS_PORT}",
            decode_responses=True,
            socket_connect_timeout=config.REDIS_SOCKET_TIMEOUT,
            socket_timeout=config.REDIS_SOCKET_TIMEOUT,
        )
    else:
        print("⚠️ REDIS_HOST not set - every task will be reported as a video")

    http_session = aiohttp.ClientSession()

    print("✅ Gateway ready!")
    yield

    # Cleanup
    print("🛑 Shutting down Gateway...")
    if http_session:
        await http_session.close()
        http_session = None
    if redis_pool:
        await redis_pool.disconnect()
        redis_pool = None


app = FastAPI(
    title="Flicker Gateway",
    description="Image and video generation proxy for Runway",
    version="1.0.0",
    lifespan=lifespan,
)


def get_backend() -> Optional[GenerationBackend]:
    """Runway client, or None when the API key is missing or the app was started without its lifespan"""
    if not config.RUNWAYML_API_KEY or http_session is None:
        return None
    return RunwayClient(http_session, config.RUNWAYML_API_KEY)


def get_store() -> Optional[TaskInfoStore]:
    """Task info store, or None when Redis is not configured"""
    if redis_pool is None:
        return None
    return TaskInfoStore(aioredis.Redis(connection_pool=redis_pool))


def json_response(data: dict, status_code: int = 200) -> JSONResponse:
    return JSONResponse(data, status_code=status_code, headers=CORS_HEADERS)


# ============================================
# Request parsing helpers
# ============================================
def parse_duration(value) -> int:
    if value in (None, ""):
        return DEFAULTS.duration
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid duration: {value!r}")


def parse_kind(value) -> JobKind:
    if value in (None, ""):
        return JobKind.VIDEO
    try:
        return JobKind(value)
    except ValueError:
        raise ValidationError(f"Invalid kind: {value!r}")


def parse_structure_strength(value) -> Optional[float]:
    if value is None:
        return DEFAULTS.structure_strength
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid structureStrength: {value!r}")


async def to_data_url(upload: UploadFile) -> str:
    contents = await upload.read()
    mime = upload.content_type or "application/octet-stream"
    return f"data:{mime};base64,{base64.b64encode(contents).decode('ascii')}"


async def remember(store: Optional[TaskInfoStore], task_id: str, kind: JobKind) -> None:
    if store is not None:
        await store.put(task_id, TaskInfo(kind=kind))


async def recall_kind(store: Optional[TaskInfoStore], task_id: str) -> JobKind:
    if store is None:
        return JobKind.VIDEO
    info = await store.get(task_id)
    return info.kind if info else JobKind.VIDEO


def forget_later(store: Optional[TaskInfoStore], task_id: str, background_tasks: BackgroundTasks) -> None:
    """Delete the task info once the response has been sent"""
    if store is not None:
        background_tasks.add_task(store.delete, task_id)


# ============================================
# /ai handlers
# ============================================
async def submit_upload(form, backend: GenerationBackend, store: Optional[TaskInfoStore]) -> dict:
    """Multipart: image file + prompt, conditioned image or video generation"""
    prompt = form.get("prompt")
    image = form.get("image")
    if not isinstance(prompt, str) or not prompt or not isinstance(image, UploadFile):
        raise ValidationError("Request is missing prompt or image file.")

    kind = parse_kind(form.get("kind"))
    ratio = form.get("ratio") or DEFAULTS.ratio
    duration = parse_duration(form.get("duration"))
    image_data_url = await to_data_url(image)

    if kind is JobKind.IMAGE:
        task_id = await backend.submit_text_to_image(prompt, ratio, reference_image=image_data_url)
    else:
        task_id = await backend.submit_image_to_video(image_data_url, prompt, duration, ratio)

    await remember(store, task_id, kind)
    print(f"✅ [{task_id}] {kind.value} task started from upload {image.filename!r}")
    return {"success": True, "taskId": task_id}


async def generate_image(body: dict, backend: GenerationBackend, store: Optional[TaskInfoStore], background_tasks: BackgroundTasks) -> dict:
    prompt = body.get("prompt")
    if not prompt:
        raise ValidationError("Image prompt is missing.")

    task_id = await backend.submit_text_to_image(
        prompt,
        body.get("ratio") or DEFAULTS.ratio,
        structure_strength=parse_structure_strength(body.get("structureStrength")),
    )
    await remember(store, task_id, JobKind.IMAGE)
    print(f"✅ [{task_id}] image task started")
    return {"success": True, "taskId": task_id}


async def start_video_from_url(body: dict, backend: GenerationBackend, store: Optional[TaskInfoStore], background_tasks: BackgroundTasks) -> dict:
    video_prompt = body.get("videoPrompt")
    image_url = body.get("imageUrl")
    if not video_prompt or not image_url:
        raise ValidationError("Missing video prompt or image URL.")

    task_id = await backend.submit_image_to_video(
        image_url,
        video_prompt,
        parse_duration(body.get("duration")),
        body.get("ratio") or DEFAULTS.ratio,
    )
    await remember(store, task_id, JobKind.VIDEO)
    print(f"✅ [{task_id}] video task started")
    return {"success": True, "taskId": task_id}


async def check_status(body: dict, backend: GenerationBackend, store: Optional[TaskInfoStore], background_tasks: BackgroundTasks) -> dict:
    """
    Relay the upstream task status.
    Only terminal states touch the store: success reads the kind, and both
    success and failure schedule the record's deletion.
    """
    task_id = body.get("taskId")
    if not isinstance(task_id, str) or not task_id:
        raise ValidationError("Invalid status check request.")

    task = await backend.get_task_status(task_id)

    if task.status is TaskStatus.SUCCEEDED:
        forget_later(store, task_id, background_tasks)
        if not task.result_url:
            print(f"❌ [{task_id}] Task SUCCEEDED with empty output")
            raise EmptyOutputError("Task succeeded but output was empty.")

        kind = await recall_kind(store, task_id)
        TASKS_FINISHED.labels(kind=kind.value, status=task.status.value).inc()
        print(f"✅ [{task_id}] Task SUCCEEDED, returning {kind.value} URL: {task.result_url}")
        payload = {
            "success": True,
            "status": task.status.value,
            "progress": task.progress if task.progress is not None else 1,
        }
        payload["imageUrl" if kind is JobKind.IMAGE else "videoUrl"] = task.result_url
        return payload

    if task.status is TaskStatus.FAILED:
        forget_later(store, task_id, background_tasks)
        TASKS_FINISHED.labels(kind="unknown", status=task.status.value).inc()
        print(f"❌ [{task_id}] Task FAILED: {task.failure or 'no reason given'}")
        return {
            "success": True,
            "status": task.status.value,
            "progress": task.progress,
            "failure": task.failure,
            "failureCode": task.failure_code,
        }

    return {"success": True, "status": task.status.value, "progress": task.progress}


ACTIONS = {
    "generateImage": generate_image,
    "startVideoFromUrl": start_video_from_url,
    "status": check_status,
}


# Browser client
CLIENT_HTML = """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Flicker • Image &amp; Video Generation</title>
    <style>
        * { box-sizing: border-box; margin: 0; padding: 0; }

        :root {
            --bg-primary: #1a1a1a;
            --bg-secondary: #2a2a2a;
            --bg-tertiary: #333333;
            --text-primary: #f5f5f5;
            --text-secondary: #a0a0a0;
            --accent: #d97706;
            --border: #404040;
            --success: #22c55e;
            --error: #ef4444;
        }

        body {
            font-family: -apple-system, BlinkMacSystemFont, sans-serif;
            background: var(--bg-primary);
            color: var(--text-primary);
        }

        .header {
            padding: 16px 24px;
            border-bottom: 1px solid var(--border);
            background: var(--bg-secondary);
            font-size: 20px;
            font-weight: 600;
        }

        .page { max-width: 700px; margin: 0 auto; padding: 24px; }

        .section {
            background: var(--bg-secondary);
            border: 1px solid var(--border);
            border-radius: 12px;
            padding: 16px;
            margin-bottom: 20px;
        }

        .section h3 { margin-bottom: 12px; font-weight: 500; }

        input[type=text] {
            width: 100%;
            padding: 10px;
            font-size: 15px;
            background: var(--bg-tertiary);
            color: var(--text-primary);
            border: 1px solid var(--border);
            border-radius: 8px;
        }

        .choices { margin-top: 12px; color: var(--text-secondary); }
        .choices label { margin-right: 15px; cursor: pointer; }

        #preview { display: none; margin-top: 12px; max-width: 300px; max-height: 200px; }

        button {
            margin-top: 12px;
            padding: 10px 20px;
            font-size: 15px;
            background: var(--accent);
            color: white;
            border: none;
            border-radius: 8px;
            cursor: pointer;
        }

        button:disabled { background: var(--bg-tertiary); cursor: not-allowed; }

        .status-bar { color: var(--text-secondary); margin-bottom: 8px; }
        .status-bar.error { color: var(--error); }
        .status-bar.done { color: var(--success); }

        .progress { background: var(--bg-tertiary); border-radius: 4px; overflow: hidden; }
        .progress-fill { width: 0; height: 8px; background: var(--accent); transition: width 0.5s ease; }

        #result img, #result video { width: 100%; margin-top: 12px; border-radius: 8px; }
    </style>
</head>
<body>
    <div class="header">🎬 Flicker</div>
    <div class="page">
        <div class="section">
            <h3>Step 1: Upload a source image</h3>
            <input id="fileInput" type="file" accept="image/jpeg,image/png,image/webp" onchange="handleFileSelect(event)">
            <img id="preview" alt="Preview">
        </div>

        <div class="section">
            <h3>Step 2: Describe what you want</h3>
            <input id="promptInput" type="text" placeholder="e.g. 'make it look like a watercolor painting'" oninput="updateButton()">
            <div class="choices">
                Aspect ratio:
                <label><input type="radio" name="ratio" value="1280:720" checked> Landscape (16:9)</label>
                <label><input type="radio" name="ratio" value="720:1280"> Portrait (9:16)</label>
            </div>
            <div class="choices">
                Output:
                <label><input type="radio" name="kind" value="image" checked> Image</label>
                <label><input type="radio" name="kind" value="video"> Video</label>
            </div>
            <button id="generateBtn" onclick="generate()" disabled>Generate</button>
        </div>

        <div class="section">
            <div class="status-bar" id="status">Ready</div>
            <div class="progress"><div class="progress-fill" id="progressFill"></div></div>
            <div id="result"></div>
        </div>
    </div>

    <script>
        const POLL_INTERVAL_MS = 4000;
        const VALID_TYPES = ['image/jpeg', 'image/jpg', 'image/png', 'image/webp'];
        const MAX_SIZE = 10 * 1024 * 1024;

        let selectedFile = null;
        let pollTimer = null;
        let isGenerating = false;

        const fileInput = document.getElementById('fileInput');
        const preview = document.getElementById('preview');
        const promptInput = document.getElementById('promptInput');
        const generateBtn = document.getElementById('generateBtn');
        const status = document.getElementById('status');
        const progressFill = document.getElementById('progressFill');
        const result = document.getElementById('result');

        function updateStatus(text, className = '') {
            status.textContent = text;
            status.className = 'status-bar ' + className;
        }

        function setProgress(percent) {
            progressFill.style.width = percent + '%';
        }

        function updateButton() {
            generateBtn.disabled = isGenerating || !selectedFile || !promptInput.value.trim();
        }

        function stopPolling() {
            if (pollTimer) {
                clearInterval(pollTimer);
                pollTimer = null;
            }
        }

        function finish(text, className) {
            stopPolling();
            isGenerating = false;
            updateStatus(text, className);
            updateButton();
        }

        function resetState() {
            stopPolling();
            result.innerHTML = '';
            setProgress(0);
            updateStatus('Ready');
        }

        function handleFileSelect(event) {
            const file = event.target.files[0];
            if (!file) return;
            resetState();
            selectedFile = null;
            preview.style.display = 'none';
            if (!VALID_TYPES.includes(file.type)) {
                updateStatus('Please select a valid image format (JPEG, PNG, WebP)', 'error');
            } else if (file.size > MAX_SIZE) {
                updateStatus('The file is too large. Maximum 10MB allowed.', 'error');
            } else {
                selectedFile = file;
                preview.src = URL.createObjectURL(file);
                preview.style.display = 'block';
            }
            updateButton();
        }

        function showResult(data) {
            if (data.imageUrl) {
                const img = document.createElement('img');
                img.src = data.imageUrl;
                img.alt = 'Generated image';
                result.appendChild(img);
            } else {
                const video = document.createElement('video');
                video.src = data.videoUrl;
                video.controls = true;
                video.autoplay = true;
                video.loop = true;
                result.appendChild(video);
            }
        }

        function pollForStatus(taskId) {
            stopPolling();
            pollTimer = setInterval(async () => {
                try {
                    const response = await fetch('/ai', {
                        method: 'POST',
                        headers: { 'Content-Type': 'application/json' },
                        body: JSON.stringify({ action: 'status', taskId }),
                    });
                    const data = await response.json();
                    if (!response.ok || !data.success) {
                        throw new Error(data.error || 'Failed to check task status');
                    }

                    if (data.status === 'SUCCEEDED') {
                        if (!data.imageUrl && !data.videoUrl) {
                            throw new Error('Task succeeded but no result URL was returned.');
                        }
                        setProgress(100);
                        showResult(data);
                        finish('Generation completed!', 'done');
                    } else if (data.status === 'FAILED') {
                        throw new Error(data.failure || 'Generation failed.');
                    } else {
                        const percent = (data.progress * 100) || 0;
                        setProgress(percent);
                        updateStatus(`Status: ${data.status} (${percent.toFixed(0)}%)`);
                    }
                } catch (err) {
                    finish(`Error: ${err.message}`, 'error');
                }
            }, POLL_INTERVAL_MS);
        }

        async function generate() {
            const prompt = promptInput.value.trim();
            if (!selectedFile || !prompt) {
                updateStatus('Please upload an image and provide a prompt.', 'error');
                return;
            }

            resetState();
            isGenerating = true;
            updateButton();
            updateStatus('Uploading image and starting job...');

            try {
                const formData = new FormData();
                formData.append('prompt', prompt);
                formData.append('image', selectedFile);
                formData.append('ratio', document.querySelector('input[name=ratio]:checked').value);
                formData.append('kind', document.querySelector('input[name=kind]:checked').value);

                const response = await fetch('/ai', { method: 'POST', body: formData });
                const data = await response.json();
                if (!response.ok || !data.success) {
                    throw new Error(data.error || 'Failed to start generation');
                }

                updateStatus('Job started, processing...');
                pollForStatus(data.taskId);
            } catch (err) {
                finish(`Error: ${err.message}`, 'error');
            }
        }

        window.addEventListener('beforeunload', stopPolling);
    </script>
</body>
</html>
"""


@app.get("/", response_class=HTMLResponse)
async def home():
    """Serve the browser client"""
    return CLIENT_HTML


@app.get("/health")
async def health_check(store: Optional[TaskInfoStore] = Depends(get_store)):
    """Health check endpoint"""
    if store is None:
        return {"status": "healthy", "redis": "disabled"}
    try:
        await store.ping()
        return {"status": "healthy", "redis": "connected"}
    except Exception as e:
        raise HTTPException(status_code=503, detail=f"Unhealthy: {str(e)}")


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.options("/ai")
async def ai_preflight():
    """CORS preflight: no body, permissive headers"""
    return Response(status_code=204, headers=PREFLIGHT_HEADERS)


@app.post("/ai")
async def ai(
    request: Request,
    background_tasks: BackgroundTasks,
    backend: Optional[GenerationBackend] = Depends(get_backend),
    store: Optional[TaskInfoStore] = Depends(get_store),
):
    """
    Single entry point for the browser.

    multipart/form-data  -> start a job conditioned on the uploaded image
    application/json     -> {"action": "generateImage" | "startVideoFromUrl" | "status", ...}

    Every failure, whatever its cause, becomes {"success": false, "error": ...}
    with HTTP 500.
    """
    action = "unknown"
    start_time = time.time()

    try:
        if backend is None:
            raise ConfigurationError(
                "Upstream client unavailable: RUNWAYML_API_KEY is not configured or the gateway has not started."
            )

        content_type = request.headers.get("content-type", "")

        if "multipart/form-data" in content_type:
            action = "upload"
            payload = await submit_upload(await request.form(), backend, store)

        elif "application/json" in content_type:
            body = await request.json()
            if not isinstance(body, dict):
                raise ValidationError("Request body must be a JSON object.")
            handler = ACTIONS.get(body.get("action"))
            if handler is None:
                raise ValidationError("Invalid action specified.")
            action = body["action"]
            payload = await handler(body, backend, store, background_tasks)

        else:
            raise ValidationError("Invalid request content-type.")

    except Exception as e:
        category = e.category if isinstance(e, ProxyError) else "internal"
        print(f"❌ Caught a top-level error ({action}, {category}): {e}")
        REQUEST_COUNT.labels(action=action, outcome=category).inc()
        error_payload = {"success": False, "error": str(e) or e.__class__.__name__}
        if isinstance(e, ProxyError) and e.status:
            error_payload["status"] = e.status
        return json_response(error_payload, 500)

    REQUEST_COUNT.labels(action=action, outcome="success").inc()
    if action != "status":
        print(f"⏱️ {action} handled in {time.time() - start_time:.2f}s")
    return json_response(payload)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
