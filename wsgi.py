from okrhub import create_app

app = create_app()

# Run with a single worker so only one drain scheduler is armed:
# gunicorn -w 1 wsgi:app
