from app.services.job_store import JobStore


def _submit(client, prompt="a cat in a garden", user_id="alice", **extra):
    payload = {"user_id": user_id, "prompt": prompt, "style": "ghibli", "size": "1024x1024", **extra}
    return client.post("/api/v1/generate", json=payload)


def _succeed(session_factory, job_id, seed=1234):
    db = session_factory()
    try:
        store = JobStore(db)
        store.claim(job_id)
        store.mark_success(job_id, f"/files/outputs/jobs/{job_id}/result.png", "aGk=", "sdxl", 2000, seed)
    finally:
        db.close()


def _fail(session_factory, job_id):
    db = session_factory()
    try:
        store = JobStore(db)
        store.claim(job_id)
        store.mark_failed(job_id, "boom", "SERVER_ERROR")
    finally:
        db.close()


def test_generate_returns_job_id(client, dispatcher):
    response = _submit(client)

    assert response.status_code == 202
    body = response.json()
    assert body["success"] is True
    assert body["job_id"].startswith("gen_")
    assert body["deduplicated"] is False
    assert dispatcher.dispatched == [body["job_id"]]


def test_pending_status_is_not_cached(client):
    job_id = _submit(client).json()["job_id"]

    response = client.get(f"/api/v1/generate/{job_id}/status")

    assert response.status_code == 200
    assert response.headers["Cache-Control"] == "no-cache, no-store, must-revalidate"
    body = response.json()
    assert body["state"] == "pending"
    assert body["progress"] == 0


def test_terminal_status_is_cacheable(client, session_factory):
    job_id = _submit(client).json()["job_id"]
    _succeed(session_factory, job_id)

    response = client.get(f"/api/v1/generate/{job_id}/status", params={"user_id": "alice"})

    assert response.headers["Cache-Control"] == "public, max-age=3600"
    body = response.json()
    assert body["state"] == "success"
    assert body["progress"] == 100
    assert body["url"] == f"/files/outputs/jobs/{job_id}/result.png"
    assert body["seed"] == 1234


def test_repeat_after_success_is_deduplicated(client, session_factory):
    job_id = _submit(client).json()["job_id"]
    _succeed(session_factory, job_id)

    response = _submit(client)

    assert response.status_code == 200
    assert response.json() == {"success": True, "job_id": job_id, "deduplicated": True}


def test_safety_violation_body(client, dispatcher):
    response = _submit(client, prompt="a naked statue")

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": "Content contains restricted term: naked",
        "error_code": "SAFETY_VIOLATION",
    }
    assert dispatcher.dispatched == []


def test_rate_limit_sets_retry_after(client, session_factory):
    # Finish each job so the active-job cap does not trip first
    for i in range(10):
        job_id = _submit(client, prompt=f"a cat number {i}").json()["job_id"]
        _fail(session_factory, job_id)

    response = _submit(client, prompt="one more cat")

    assert response.status_code == 429
    assert response.json()["error_code"] == "RATE_LIMIT"
    assert response.headers["Retry-After"] == "60"


def test_active_job_cap(client):
    for prompt in ("a cat", "a dog", "a bird"):
        assert _submit(client, prompt=prompt).status_code == 202

    response = _submit(client, prompt="a fox")

    assert response.status_code == 429
    assert response.json()["error_code"] == "QUOTA_EXCEEDED"


def test_invalid_prompt(client):
    response = _submit(client, prompt="ab")

    assert response.status_code == 400
    assert response.json()["error_code"] == "INVALID_PROMPT"


def test_queue_full(client, dispatcher):
    dispatcher.accept = False

    response = _submit(client)

    assert response.status_code == 503
    assert response.json()["error_code"] == "QUEUE_FULL"


def test_status_not_found(client):
    response = client.get("/api/v1/generate/gen_missing/status")

    assert response.status_code == 404
    assert response.json()["error_code"] == "NOT_FOUND"


def test_status_of_other_users_job(client):
    job_id = _submit(client).json()["job_id"]

    response = client.get(f"/api/v1/generate/{job_id}/status", params={"user_id": "mallory"})

    assert response.status_code == 403
    assert response.json()["error_code"] == "ACCESS_DENIED"


def test_regenerate(client, session_factory):
    job_id = _submit(client).json()["job_id"]
    _succeed(session_factory, job_id, seed=777)

    response = client.post(
        f"/api/v1/generate/{job_id}/regenerate",
        json={"user_id": "alice", "prompt_delta": "+ at sunset", "lock_seed": True},
    )

    assert response.status_code == 202
    new_id = response.json()["job_id"]
    assert new_id != job_id

    db = session_factory()
    try:
        job = JobStore(db).get(new_id)
        assert job.prompt.endswith("at sunset")
        assert job.seed == 777
        assert job.parent_job_id == job_id
    finally:
        db.close()


def test_regenerate_requires_success(client):
    job_id = _submit(client).json()["job_id"]

    response = client.post(f"/api/v1/generate/{job_id}/regenerate", json={"user_id": "alice", "prompt_delta": "+ at sunset"})

    assert response.status_code == 409
    assert response.json()["error_code"] == "INVALID_STATE"


def test_regenerate_missing_job(client):
    response = client.post("/api/v1/generate/gen_missing/regenerate", json={"user_id": "alice"})

    assert response.status_code == 404
    assert response.json()["error_code"] == "NOT_FOUND"
