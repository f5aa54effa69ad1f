import logging
import sys
from pathlib import Path

Path("log").mkdir(exist_ok=True)

# Configuração básica de logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler('log/server.log', encoding='utf-8')
    ]
)

logger = logging.getLogger('unipet')
