#!/usr/bin/env python3
import uvicorn
from lendlab.app import app
from lendlab.configs import OPTIONS

if __name__ == "__main__":
    print(f"Starting uvicorn server on port {OPTIONS['port']}...")
    uvicorn.run(app, host=OPTIONS['host'], port=OPTIONS['port'], log_level=OPTIONS['log_level'])
