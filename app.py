from unierp import create_app

app = create_app()

# ---- Run ----
if __name__ == "__main__":
    # debug=True only for local dev
    app.run(host="127.0.0.1", port=5000, debug=True)
