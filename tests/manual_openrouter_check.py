"""Manual script to verify the OpenRouter API key works."""

from __future__ import annotations

import os

import requests
from config.settings import load_config

config = load_config()  # 读取 .env 并写入 os.environ

BASE_URL = config.api_base_url
API_KEY = os.getenv("OPENROUTER_API_KEY")
MODEL = config.text_model

if not API_KEY:
    print("[error] OPENROUTER_API_KEY not set; check .env or environment variables.")
    raise SystemExit(1)

headers = {"Authorization": f"Bearer {API_KEY}", "Content-Type": "application/json"}

try:
    resp = requests.get(f"{BASE_URL}/models", headers=headers, timeout=30)
    print("Status:", resp.status_code)
    if resp.ok:
        data = resp.json()
        models = [item.get("id") for item in data.get("data", [])]
        print("Models count:", len(models))
        print("Text model listed:", MODEL in models)
        print("Image model listed:", config.image_model in models)
    else:
        print(resp.text[:500])

    payload = {
        "model": MODEL,
        "messages": [
            {"role": "user", "content": "Write one short affirmation about confidence."},
        ],
        "max_tokens": 60,
    }
    chat = requests.post(
        f"{BASE_URL}/chat/completions",
        headers=headers,
        json=payload,
        timeout=30,
    )
    print("Chat status:", chat.status_code)
    if chat.ok:
        data = chat.json()
        choice = data.get("choices", [{}])[0]
        print("Generation:", choice.get("message", {}).get("content"))
    else:
        print(chat.text[:500])
except Exception as exc:  # noqa: BLE001
    print("[error]", exc)
    raise
