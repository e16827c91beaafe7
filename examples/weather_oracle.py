#!/usr/bin/env python3
"""
Weather oracle example.

Fetches the current forecast for New York City from the National Weather
Service and writes the temperature and chance of precipitation to a
contract exposing:

    function updateWeather(int256 temperature, uint8 precipitationProbability) external
"""
import json
import logging
import os

from oraclekit import OracleKit
from oraclekit.exceptions import ExecutionError, OracleKitError

WEATHER_FUNCTION = "function updateWeather(int256 temperature, uint8 precipitationProbability) external"
READ_FUNCTION = "function currentWeather() view returns (int256 temperature, uint8 precipitationProbability)"

FORECAST_SNIPPET = """
import requests

url = "https://api.weather.gov/gridpoints/OKX/33,35/forecast"
forecast = requests.get(url, timeout=10).json()
period = forecast["properties"]["periods"][0]
print("Forecast:", period["shortForecast"])
return [period["temperature"], period["probabilityOfPrecipitation"]["value"] or 0]
"""


def main():
    logging.basicConfig(level=logging.INFO)

    contract_address = os.environ.get("WEATHER_CONTRACT_ADDRESS")
    chain = os.environ.get("WEATHER_CHAIN", "sepolia")

    if not contract_address:
        print("ERROR: WEATHER_CONTRACT_ADDRESS environment variable is required")
        return
    if not os.environ.get("ORACLE_KIT_PRIVATE_KEY"):
        print("ERROR: ORACLE_KIT_PRIVATE_KEY environment variable is required")
        return

    with OracleKit.from_env() as kit:
        try:
            print("Testing the data source...")
            print("Values:", kit.test_data_source(FORECAST_SNIPPET))

            print(f"Writing to {contract_address} on {chain}...")
            result = kit.write_to_chain(FORECAST_SNIPPET, WEATHER_FUNCTION, contract_address, chain)
            print(json.dumps(result.model_dump(by_alias=True), indent=2))

            print("On-chain value:", kit.read_from_chain(READ_FUNCTION, contract_address, chain))
        except ExecutionError as e:
            print(f"Program failed: {e}")
            if e.logs:
                print(e.logs)
        except OracleKitError as e:
            print(f"Error: {e}")


if __name__ == "__main__":
    main()
