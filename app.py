"""
Simple production entry point for Render deployment
"""
import os

from main import app

if __name__ == '__main__':
    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', 10000)))
