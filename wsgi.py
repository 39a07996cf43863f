from nubecompute import create_app
from nubecompute.config import ProductionConfig

app = create_app(ProductionConfig)

if __name__ == '__main__':
    app.run()
