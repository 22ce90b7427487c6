import sys

import requests

base_url = "http://localhost:5000"
email = sys.argv[1] if len(sys.argv) > 1 else "test@example.com"

try:
    print(f"Requesting a verification code for {email}...")
    response = requests.post(f"{base_url}/api/send-code", json={"email": email})
    print(f"Status Code: {response.status_code}")
    print("Response Body:")
    print(response.text)

    if response.ok and len(sys.argv) > 2:
        code = sys.argv[2]
        print(f"Redeeming code {code}...")
        response = requests.post(
            f"{base_url}/api/subscribers",
            json={"email": email, "source": "gift", "code": code},
        )
        print(f"Status Code: {response.status_code}")
        print(response.text)
except requests.RequestException as e:
    print(f"Error: {e}")
