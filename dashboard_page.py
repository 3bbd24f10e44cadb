"""
Root document served at "/". The inline script applies the same
reconciliation rules as reconciler.Reconciler.
"""

HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>WSL Fleet</title>
<style>
  * { margin:0; padding:0; box-sizing:border-box; }
  body {
    background: #050508;
    color: #e0e0ff;
    font-family: 'Courier New', monospace;
    padding: 24px;
  }
  h1 {
    font-size:1.1rem; letter-spacing:0.3em;
    color:#a080ff; text-shadow: 0 0 20px #a080ff88;
    text-transform:uppercase; margin-bottom:16px;
  }
  #add { display:flex; gap:8px; margin-bottom:16px; }
  input { background:#0c0c18; border:1px solid #2a2a5a; color:#e0e0ff; padding:6px 10px; font-family:inherit; }
  button { background:#14142a; border:1px solid #2a2a5a; color:#a080ff; padding:4px 10px; cursor:pointer; font-family:inherit; }
  button:disabled { opacity:0.3; cursor:default; }
  table { width:100%; border-collapse:collapse; font-size:0.8rem; }
  th { text-align:left; color:#606090; font-weight:normal; letter-spacing:0.15em; padding:6px 12px; }
  td { padding:8px 12px; border-top:1px solid #14142a; }
  .badge { padding:2px 8px; border-radius:3px; background:#14142a; color:#606090; font-size:0.7rem; }
  .badge-running { background:#0a3a1a; color:#44ff88; }
  .badge-transition { background:#3a2a0a; color:#ffaa44; }
  tr.pulse { animation: pulse 1.2s ease-in-out infinite; }
  @keyframes pulse { 50% { opacity:0.45; } }
  #ps-logs { margin-top:24px; height:200px; overflow-y:auto; font-size:0.7rem; border:1px solid #14142a; padding:8px; }
  #ps-logs div { border-left:2px solid #a080ff44; padding-left:8px; line-height:1.4; }
  .log-error { color:#ff4466; }
  .log-info { color:#9090c0; }
  .log-debug { color:#505070; }
</style>
</head>
<body>
<h1>WSL Fleet</h1>
<div id="add">
  <input id="new-name" placeholder="new instance name">
  <button onclick="app.add()">CREATE</button>
</div>
<table>
  <thead><tr><th>NAME</th><th>STATE</th><th>MEMORY</th><th>DISK</th><th></th></tr></thead>
  <tbody id="fleet-grid"><tr id="loading-row"><td colspan="5">waiting for fleet...</td></tr></tbody>
</table>
<div id="ps-logs"></div>
<script>
const GRACE_PERIOD_MS = 120000;
const RECONNECT_MS = 2000;
const LOG_LIMIT = 100;
const STABLE = ["Running", "Stopped"];
const TARGETS = { create:"Creating", start:"Starting", daemon:"Starting", terminate:"Stopping", delete:"Deleting" };
const ARRIVALS = {
  Creating: ["Creating", "Running"],
  Starting: ["Starting", "Running"],
  Stopping: ["Stopping", "Stopped"],
  Deleting: ["Deleting"],
};

const state = { members: new Map(), transitions: new Map(), rendered: new Map(), ws: null };

function summarizeMemory(raw) {
  if (!raw) return "--";
  const parts = raw.split(/\\s+/);
  const i = parts.indexOf("Mem:");
  if (i !== -1 && /^\\d+$/.test(parts[i + 2] || "")) return `${parts[i + 2]} MB`;
  return raw.trim();
}

function summarizeDisk(raw) {
  if (!raw) return "--";
  const root = raw.trim().split("\\n").map(l => l.trimEnd()).find(l => l.endsWith(" /"));
  if (root) { const p = root.split(/\\s+/); if (p[2]) return p[2]; }
  const m = raw.match(/\\/\\s+\\d+\\w+\\s+(\\d+\\w+)/);
  return m ? m[1] : raw.trim();
}

function renderRow(member, trans) {
  const s = trans ? trans.target : member.state;
  const stable = STABLE.includes(s);
  return {
    name: member.name, state: s, busy: !stable,
    memory: summarizeMemory(member.memory), disk: summarizeDisk(member.disk),
    canStart: s === "Stopped", canStop: s === "Running", canDelete: stable,
  };
}

const HTML_ESCAPES = { "&": "&amp;", "<": "&lt;", ">": "&gt;", '"': "&quot;", "'": "&#39;" };

function escapeHtml(value) {
  return String(value ?? "").replace(/[&<>"']/g, c => HTML_ESCAPES[c]);
}

// names and usage text come from the control plane and other viewers
function rowHtml(r) {
  const badge = r.state === "Running" ? "badge-running" : (r.busy ? "badge-transition" : "");
  return `<td>${escapeHtml(r.name)}</td><td><span class="badge ${badge}">${escapeHtml(r.state)}</span></td>`
    + `<td>${escapeHtml(r.memory)}</td><td>${escapeHtml(r.disk)}</td><td style="text-align:right">`
    + `<button data-act="start" ${r.canStart ? "" : "disabled"}>START</button> `
    + `<button data-act="terminate" ${r.canStop ? "" : "disabled"}>STOP</button> `
    + `<button data-act="delete" ${r.canDelete ? "" : "disabled"}>DEL</button></td>`;
}

// diff desired rows against what is on screen and touch only the deltas
function commit() {
  const grid = document.getElementById("fleet-grid");
  const desired = new Map();
  for (const [name, m] of state.members) desired.set(name, renderRow(m, state.transitions.get(name)));
  for (const name of state.rendered.keys()) {
    if (!desired.has(name)) document.getElementById(`row-${name}`)?.remove();
  }
  for (const [name, r] of desired) {
    const old = state.rendered.get(name);
    if (old && JSON.stringify(old) === JSON.stringify(r)) continue;
    let el = document.getElementById(`row-${name}`);
    if (!el) {
      el = document.createElement("tr");
      el.id = `row-${name}`;
      grid.appendChild(el);
    }
    el.className = r.busy ? "pulse" : "";
    el.innerHTML = rowHtml(r);
    el.querySelectorAll("button").forEach(b => b.onclick = () => app.send(b.dataset.act, name));
  }
  state.rendered = desired;
  if (desired.size) document.getElementById("loading-row")?.remove();
}

function begin(name, type) {
  const target = TARGETS[type];
  if (!target) return;
  state.transitions.set(name, { target, stamp: Date.now() });
  if (!state.members.has(name)) state.members.set(name, { name, state: target, memory: null, disk: null });
  commit();
}

function applySnapshot(list) {
  const now = Date.now();
  const current = new Map(list.map(m => [m.name, m]));
  for (const [name, m] of current) {
    const t = state.transitions.get(name);
    if (t && ARRIVALS[t.target].includes(m.state)) state.transitions.delete(name);
  }
  for (const name of [...state.members.keys()]) {
    if (current.has(name)) continue;
    const t = state.transitions.get(name);
    if (t && t.target !== "Deleting" && now - t.stamp <= GRACE_PERIOD_MS) continue;
    state.members.delete(name);
    state.transitions.delete(name);
  }
  // listed members otherwise leave a transition only by arriving; non-delete ones expire
  for (const [name, t] of [...state.transitions]) {
    if (current.has(name) && t.target !== "Deleting" && now - t.stamp > GRACE_PERIOD_MS) state.transitions.delete(name);
  }
  for (const [name, m] of current) {
    if (state.transitions.has(name)) continue;
    const old = state.members.get(name);
    state.members.set(name, {
      ...m,
      memory: m.memory ?? (old ? old.memory : null),
      disk: m.disk ?? (old ? old.disk : null),
    });
  }
  commit();
}

function applyStats(s) {
  const m = state.members.get(s.name);
  if (!m) return;
  state.members.set(s.name, { ...m, memory: s.memory ?? m.memory, disk: s.disk ?? m.disk });
  commit();
}

function appendPsLog(text) {
  const box = document.getElementById("ps-logs");
  const entry = document.createElement("div");
  let level = "info";
  if (text.includes("[ERROR]") || text.includes("FAILED")) level = "error";
  else if (text.includes("[DEBUG]")) level = "debug";
  entry.className = `log-${level}`;
  const time = new Date().toLocaleTimeString([], { hour12:false, hour:"2-digit", minute:"2-digit", second:"2-digit" });
  entry.textContent = `[${time}] ${text}`;
  box.appendChild(entry);
  box.scrollTop = box.scrollHeight;
  while (box.childNodes.length > LOG_LIMIT) box.removeChild(box.firstChild);
}

function connect() {
  const proto = location.protocol === "https:" ? "wss:" : "ws:";
  state.ws = new WebSocket(`${proto}//${location.host}/ws`);
  state.ws.onmessage = e => {
    let msg;
    try { msg = JSON.parse(e.data); } catch (err) { return; }
    if (msg.type === "list") applySnapshot(Array.isArray(msg.data) ? msg.data : [msg.data]);
    else if (msg.type === "stats") applyStats(msg.data);
    else if (msg.type === "ps-log") appendPsLog(msg.data);
  };
  state.ws.onclose = () => setTimeout(connect, RECONNECT_MS);
}

const app = {
  send(type, name) {
    if (!state.ws || state.ws.readyState !== WebSocket.OPEN) { appendPsLog(`[ERROR] not connected, ${type} ${name} not sent`); return; }
    if (type === "delete" && !confirm(`Delete ${name}?`)) return;
    begin(name, type);
    state.ws.send(JSON.stringify({ type, name }));
  },
  add() {
    const input = document.getElementById("new-name");
    const name = input.value.trim();
    if (!name) return;
    app.send("create", name);
    input.value = "";
  },
};

connect();
</script>
</body>
</html>"""
