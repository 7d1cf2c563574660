"""webui-ops - Backup, restore and update tooling for Open WebUI and Ollama."""
