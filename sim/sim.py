import json, random, time, os, paho.mqtt.client as mqtt

PRODUCT_KEY = os.getenv("PRODUCT_KEY", "SIMKEY000000001")
CODE = os.getenv("DEVICE_CODE", "SIMCODE001")
PROBES = int(os.getenv("PROBES", "4"))
HOST = os.getenv("MQTT_HOST", "broker")

motor_on = [False] * PROBES


def on_message(client, userdata, msg):
    global motor_on
    motor_on = json.loads(msg.payload)["motorOn"]
    print("RX", motor_on)


client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, "sim-esp32")
client.on_message = on_message
client.connect(HOST, 1883, 60)
client.subscribe(f"machine/{PRODUCT_KEY}/cmd/motor", qos=1)
client.loop_start()

while True:
    payload = {
        "code": CODE,
        "waterLevel": random.randint(5, 100),
        "soilMoisture": [random.randint(20, 45) for _ in range(PROBES)],
        "motorOn": motor_on,
    }
    topic = f"machine/{PRODUCT_KEY}/telemetry"
    client.publish(topic, json.dumps(payload))
    print("TX", payload)
    time.sleep(10)
