"""Minimal engine sidecar used by the process-level tests.

Speaks the JSON-lines protocol on stdin/stdout:
- analyze: reports an error for every line containing "undefined"
- compile: returns fake JavaScript, or problems when the source contains
  "syntax error"
- complete / fixes / format / document: canned answers
- a source containing "CRASH <code>" makes the engine exit with <code>
- method "explode" answers with an error object
- method "malformed_error" answers with a string in place of the error object
- method "bad_id" answers with a list in place of the request id
"""

import json
import re
import sys

CRASH = re.compile(r"CRASH (\d+)")


def _sources_text(params):
    if "sources" in params:
        return "\n".join(params["sources"].values())
    return params.get("source", "")


def handle(method, params):
    text = _sources_text(params)
    crash = CRASH.search(text)
    if crash:
        sys.exit(int(crash.group(1)))

    if method == "analyze":
        issues = []
        for name, source in params["sources"].items():
            for number, line in enumerate(source.split("\n"), start=1):
                if "undefined" in line:
                    issues.append({
                        "kind": "error",
                        "line": number,
                        "message": "Undefined name",
                        "sourceName": name,
                    })
        return {"issues": issues, "packageImports": []}

    if method == "compile":
        if "syntax error" in text:
            return {"problems": [{"message": "Expected ';' after this."}]}
        result = {"output": "(function(){})();"}
        if params.get("returnSourceMap"):
            result["sourceMap"] = '{"version": 3}'
        return result

    if method == "complete":
        location = params["location"]
        return {
            "replacementOffset": location["offset"],
            "replacementLength": 0,
            "completions": [{"completion": "print"}],
        }

    if method == "fixes":
        return {"fixes": [{"message": "Insert ';'"}]}

    if method == "format":
        return {"newString": params["source"].strip() + "\n", "offset": params["offset"]}

    if method == "document":
        return {"description": "Prints an object to the console."}

    raise ValueError(f"Unknown method: {method}")


def respond(request):
    try:
        return {"id": request["id"], "result": handle(request["method"], request["params"])}
    except ValueError as e:
        return {"id": request["id"], "error": {"type": "ValueError", "message": str(e)}}


def main():
    sys.stdout.write('{"status":"ready"}\n')
    sys.stdout.flush()

    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue

        request = json.loads(line)
        if request["method"] == "malformed_error":
            response = {"id": request["id"], "error": "boom"}
        elif request["method"] == "bad_id":
            response = {"id": [request["id"]], "result": {}}
        else:
            response = respond(request)

        sys.stdout.write(json.dumps(response) + "\n")
        sys.stdout.flush()


if __name__ == "__main__":
    main()
