"""Sources that supply the data of a requested file: local files, memory and URIs."""