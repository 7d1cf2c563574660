from webui_ops.main import app

app(prog_name="webui-ops")
