from laundry import create_app

app = create_app()
