from stockwatch import create_app

app = create_app()
